"""Logging helpers for FragMapLab runs."""
from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Tuple

LOGGER_NAME = "fragmaplab"


def setup_run_logger(output_dir: str, name: str = LOGGER_NAME) -> Tuple[logging.Logger, str]:
    os.makedirs(output_dir, exist_ok=True)
    log_path = os.path.join(output_dir, "fragmaplab.log")

    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    # Stale handlers from an earlier run would duplicate every line.
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logger.addHandler(handler)

    logger.info("=== FragMapLab run started %s ===", datetime.now().isoformat())
    return logger, log_path
