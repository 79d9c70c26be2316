"""Proximity ranking of sampled points around reference anchors."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from MDAnalysis.lib import distances

from fragmap.models import (
    DIRECTION_EXCLUSION,
    DIRECTION_FAVORABLE,
    PointSet,
    ReferenceAnchor,
    RegionOptions,
    ScoreWeights,
    Vector3,
    normalize_direction,
)

logger = logging.getLogger("fragmaplab")

ADAPTIVE_LENGTH_SCALE = 20.0
DEFAULT_BOUNDS_PADDING = 5.0
REGION_MODE_RANKED = "ranked"
REGION_MODE_BOUNDING_BOX = "bounding_box"
_DISTANCE_CHUNK = 50000

Bounds = Tuple[Vector3, Vector3]


def _anchor_array(anchors: Sequence[ReferenceAnchor]) -> np.ndarray:
    if not anchors:
        return np.zeros((0, 3), dtype=np.float64)
    return np.asarray([anchor.coordinates for anchor in anchors], dtype=np.float64).reshape(-1, 3)


def value_score(values, best: float = -2.0, worst: float = 0.0) -> np.ndarray:
    """Map values onto [0, 1]: ``best`` and beyond -> 1.0, ``worst`` and beyond -> 0.0."""
    if best == worst:
        raise ValueError("value score range is empty (best == worst)")
    values = np.asarray(values, dtype=np.float64)
    return np.clip((worst - values) / (worst - best), 0.0, 1.0)


def region_extent(anchors: Sequence[ReferenceAnchor]) -> float:
    """Bounding-box diagonal of the anchor set."""
    coords = _anchor_array(anchors)
    if len(coords) < 2:
        return 0.0
    span = coords.max(axis=0) - coords.min(axis=0)
    return float(np.sqrt(np.dot(span, span)))


def adaptive_max_distance(base_distance: float, extent: float) -> float:
    """Scale the search radius linearly with region size; no upper cap."""
    return float(base_distance) * (1.0 + max(0.0, float(extent)) / ADAPTIVE_LENGTH_SCALE)


def min_distances(positions: np.ndarray, anchors: Sequence[ReferenceAnchor]) -> np.ndarray:
    """Distance from each position to its nearest anchor, in float64.

    ``distance_array`` (single precision) only selects the nearest anchor; the
    returned distance is recomputed in double precision.
    """
    anchor_pos = _anchor_array(anchors)
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    result = np.empty(len(positions), dtype=np.float64)
    for start in range(0, len(positions), _DISTANCE_CHUNK):
        chunk = positions[start : start + _DISTANCE_CHUNK]
        dist = distances.distance_array(chunk.astype(np.float32), anchor_pos.astype(np.float32))
        nearest = anchor_pos[np.argmin(dist, axis=1)]
        result[start : start + len(chunk)] = np.sqrt(np.sum((chunk - nearest) ** 2, axis=1))
    return result


def filter_by_region(
    points: PointSet,
    anchors: Sequence[ReferenceAnchor],
    max_distance: float = 5.0,
    max_points: int = 5000,
    weights: Optional[ScoreWeights] = None,
    value_best: float = -2.0,
    value_worst: float = 0.0,
) -> PointSet:
    """Rank points near the anchors by a weighted proximity/value score.

    Points farther than ``max_distance`` from every anchor are dropped. The rest are
    scored ``proximity * (1 - d/max_distance) + value * value_score`` and returned in
    descending score order (stable), truncated to ``max_points``.
    """
    if max_distance <= 0:
        raise ValueError(f"max_distance must be > 0, got {max_distance}")
    if int(max_points) < 1:
        raise ValueError(f"max_points must be >= 1, got {max_points}")
    weights = weights or ScoreWeights()
    if len(points) == 0 or not anchors:
        return PointSet.empty()

    nearest = min_distances(points.positions, anchors)
    keep = np.flatnonzero(nearest <= max_distance)
    if keep.size == 0:
        return PointSet.empty()

    nearest = nearest[keep]
    proximity = np.clip(1.0 - nearest / float(max_distance), 0.0, 1.0)
    values_score = value_score(points.values[keep], best=value_best, worst=value_worst)
    composite = proximity * weights.proximity + values_score * weights.value

    order = np.argsort(-composite, kind="stable")[: int(max_points)]
    ranked = points.take(keep[order])
    logger.debug(
        "Region filter kept %d of %d points (%d within %.2f A of %d anchors)",
        len(ranked),
        len(points),
        keep.size,
        max_distance,
        len(anchors),
    )
    return ranked.with_scores(
        min_distance=nearest[order],
        proximity_score=proximity[order],
        value_score=values_score[order],
        composite_score=composite[order],
    )


def bounds_from_anchors(anchors: Sequence[ReferenceAnchor], padding: float = DEFAULT_BOUNDS_PADDING) -> Optional[Bounds]:
    coords = _anchor_array(anchors)
    if len(coords) == 0:
        return None
    lower = coords.min(axis=0) - padding
    upper = coords.max(axis=0) + padding
    return tuple(float(v) for v in lower), tuple(float(v) for v in upper)  # type: ignore[return-value]


def filter_by_bounds(points: PointSet, bounds: Optional[Bounds]) -> PointSet:
    """Legacy filter: keep points inside an axis-aligned box (inclusive)."""
    if bounds is None or len(points) == 0:
        return PointSet.empty()
    lower = np.asarray(bounds[0], dtype=np.float64)
    upper = np.asarray(bounds[1], dtype=np.float64)
    inside = np.all((points.positions >= lower) & (points.positions <= upper), axis=1)
    return points.take(np.flatnonzero(inside))


def _value_range(options: RegionOptions, direction: str) -> Tuple[float, float]:
    if normalize_direction(direction) == DIRECTION_EXCLUSION:
        # exclusion maps grow more significant with larger values
        return abs(options.value_best), options.value_worst
    return options.value_best, options.value_worst


def apply_region_options(
    points: PointSet,
    anchors: Sequence[ReferenceAnchor],
    options: RegionOptions,
    direction: str = DIRECTION_FAVORABLE,
) -> PointSet:
    """Run the configured region filter mode over a sampled point set."""
    if options.mode == REGION_MODE_BOUNDING_BOX:
        return filter_by_bounds(points, bounds_from_anchors(anchors, options.bounds_padding))
    if options.mode != REGION_MODE_RANKED:
        raise ValueError(f"Unknown region mode: {options.mode!r}")

    max_distance = options.max_distance
    if options.adaptive_distance:
        extent = region_extent(anchors)
        max_distance = adaptive_max_distance(options.max_distance, extent)
        logger.debug("Adaptive region distance %.2f A (extent %.2f A)", max_distance, extent)
    best, worst = _value_range(options, direction)
    return filter_by_region(
        points,
        anchors,
        max_distance=max_distance,
        max_points=options.max_points,
        weights=options.weights,
        value_best=best,
        value_worst=worst,
    )


def describe_anchors(anchors: Sequence[ReferenceAnchor]) -> List[str]:
    return [anchor.label or f"({anchor.x:.2f}, {anchor.y:.2f}, {anchor.z:.2f})" for anchor in anchors]
