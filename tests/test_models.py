import logging

import numpy as np
import pytest

from fragmap.errors import GridWarning
from fragmap.logging_utils import setup_run_logger
from fragmap.models import (
    PointSet,
    ReferenceAnchor,
    SamplePoint,
    normalize_direction,
)
from fragmap.serialization import to_jsonable


def test_point_set_is_immutable_and_indexable():
    points = PointSet(positions=[[0, 0, 0], [1, 2, 3]], values=[-1.0, -0.5])
    assert len(points) == 2
    assert points[1] == SamplePoint(1.0, 2.0, 3.0, -0.5)
    assert [p.value for p in points] == [-1.0, -0.5]
    with pytest.raises(ValueError):
        points.positions[0, 0] = 9.0
    reordered = points.take(np.array([1, 0]))
    assert reordered.values.tolist() == [-0.5, -1.0]
    assert points.values.tolist() == [-1.0, -0.5]


def test_point_set_rejects_mismatched_columns():
    with pytest.raises(ValueError):
        PointSet(positions=[[0, 0, 0]], values=[1.0, 2.0])
    with pytest.raises(ValueError):
        PointSet(positions=[[0, 0, 0]], values=[1.0], scores={"s": [1.0, 2.0]})


def test_point_set_dataframe_and_records():
    points = PointSet(
        positions=[[0, 0, 0]],
        values=[-1.0],
        grid_indices=[[1, 2, 3]],
        scores={"composite_score": [0.7]},
    )
    df = points.to_dataframe()
    assert list(df.columns) == ["x", "y", "z", "value", "i", "j", "k", "composite_score"]
    assert points.to_records() == [{"x": 0.0, "y": 0.0, "z": 0.0, "value": -1.0}]
    assert len(PointSet.empty().to_dataframe()) == 0


def test_direction_aliases():
    assert normalize_direction("lower") == "favorable"
    assert normalize_direction("Higher") == "exclusion"
    with pytest.raises(ValueError):
        normalize_direction("up")


def test_to_jsonable_handles_domain_objects():
    payload = {
        "warning": GridWarning("padded_missing_data", "padded 2", {"added": np.int64(2)}),
        "anchor": ReferenceAnchor((1.0, 2.0, 3.0), "A:LYS72"),
        "values": np.array([1.5, 2.5]),
        "nan": float("nan"),
    }
    assert to_jsonable(payload) == {
        "warning": {"kind": "padded_missing_data", "message": "padded 2", "details": {"added": 2}},
        "anchor": {"x": 1.0, "y": 2.0, "z": 3.0, "label": "A:LYS72"},
        "values": [1.5, 2.5],
        "nan": None,
    }


def test_setup_run_logger_replaces_file_handlers(tmp_path):
    logger = logging.getLogger("fragmaplab")
    previous_propagate = logger.propagate
    try:
        setup_run_logger(str(tmp_path / "a"))
        logger, log_path = setup_run_logger(str(tmp_path / "b"))
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        logger.info("hello")
        file_handlers[0].flush()
        with open(log_path, "r", encoding="utf-8") as handle:
            content = handle.read()
        assert "FragMapLab run started" in content
        assert " | INFO | hello" in content
    finally:
        for handler in list(logger.handlers):
            if isinstance(handler, logging.FileHandler):
                logger.removeHandler(handler)
                handler.close()
        logger.propagate = previous_propagate
        logger.setLevel(logging.NOTSET)
