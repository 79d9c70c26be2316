"""Grid validation and normalization."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import List, Optional

import numpy as np

from fragmap.errors import (
    GridWarning,
    InvalidDimensionsError,
    InvalidSpacingError,
    NonFiniteValueError,
)
from fragmap.models import ParseOptions, ScalarGrid
from fragmap.parser import read_grid_file
from fragmap.stats import GridStatistics, compute_statistics

logger = logging.getLogger("fragmaplab")

PLAUSIBLE_VALUE_LIMIT = 5.0
PLAUSIBLE_SPACING_LIMIT = 5.0


@dataclass
class ValidationReport:
    grid: ScalarGrid
    warnings: List[GridWarning]
    statistics: GridStatistics


def validate_grid(grid: ScalarGrid) -> ValidationReport:
    """Check grid invariants and return a normalized, read-only copy.

    Fatal problems (non-positive dimensions or spacing, non-finite values) raise a
    :class:`FatalGridError` subclass naming the source file. A length mismatch between
    the header and the data section is repaired by zero-padding or truncation and
    reported as a warning; the input grid is left untouched.
    """
    source = grid.source
    warnings: List[GridWarning] = []

    if len(grid.dimensions) != 3 or any(int(n) <= 0 for n in grid.dimensions):
        raise InvalidDimensionsError(
            f"grid dimensions must be three positive integers, got {tuple(grid.dimensions)}",
            source=source,
        )
    if len(grid.spacing) != 3 or any(not math.isfinite(s) or s <= 0 for s in grid.spacing):
        raise InvalidSpacingError(
            f"grid spacing must be positive and finite, got {tuple(grid.spacing)}",
            source=source,
        )

    expected = grid.expected_size
    values = np.asarray(grid.values, dtype=np.float32).reshape(-1)
    if values.size > expected:
        dropped = int(values.size - expected)
        warnings.append(
            GridWarning(
                "truncated_excess_data",
                f"truncated {dropped} value(s) beyond the expected {expected}",
                {"dropped": dropped, "expected": expected},
            )
        )
        values = values[:expected].copy()
    elif values.size < expected:
        added = int(expected - values.size)
        warnings.append(
            GridWarning(
                "padded_missing_data",
                f"padded {added} missing value(s) with 0.0 to reach the expected {expected}",
                {"added": added, "expected": expected},
            )
        )
        values = np.concatenate([values, np.zeros(added, dtype=np.float32)])
    else:
        values = values.copy()

    finite = np.isfinite(values)
    if not finite.all():
        index = int(np.flatnonzero(~finite)[0])
        raise NonFiniteValueError(index, float(values[index]), source=source)

    statistics = compute_statistics(values)
    if statistics.min < -PLAUSIBLE_VALUE_LIMIT or statistics.max > PLAUSIBLE_VALUE_LIMIT:
        warnings.append(
            GridWarning(
                "unusual_value_range",
                f"values span [{statistics.min:.3f}, {statistics.max:.3f}], outside the usual GFE range",
                {"min": statistics.min, "max": statistics.max},
            )
        )
    if any(s > PLAUSIBLE_SPACING_LIMIT for s in grid.spacing):
        warnings.append(
            GridWarning(
                "unusual_spacing",
                f"grid spacing {tuple(grid.spacing)} exceeds {PLAUSIBLE_SPACING_LIMIT} A",
                {"spacing": list(grid.spacing)},
            )
        )

    values.flags.writeable = False
    normalized = replace(
        grid,
        dimensions=tuple(int(n) for n in grid.dimensions),
        spacing=tuple(float(s) for s in grid.spacing),
        origin=tuple(float(o) for o in grid.origin),
        values=values,
        metadata=dict(grid.metadata),
    )
    return ValidationReport(grid=normalized, warnings=warnings, statistics=statistics)


def log_warnings(warnings: List[GridWarning], source: Optional[str]) -> None:
    for warning in warnings:
        logger.warning("%s: %s", source or "<grid>", warning.message)


def load_grid(path: str, fmt: Optional[str] = None, options: Optional[ParseOptions] = None) -> ValidationReport:
    """Read, parse and validate one grid file."""
    grid, parse_warnings = read_grid_file(path, fmt=fmt, options=options)
    report = validate_grid(grid)
    report.warnings = list(parse_warnings) + report.warnings
    log_warnings(report.warnings, grid.source)
    logger.info(
        "Loaded %s: dims=%s spacing=%s origin=%s",
        grid.source,
        report.grid.dimensions,
        report.grid.spacing,
        tuple(round(v, 4) for v in report.grid.origin),
    )
    return report
