"""Threshold sampling of grid points into point sets."""
from __future__ import annotations

import concurrent.futures
import logging
import os
from typing import List, Optional, Tuple

import numpy as np

from fragmap.coords import to_world_array
from fragmap.models import DIRECTION_FAVORABLE, PointSet, ScalarGrid, normalize_direction

logger = logging.getLogger("fragmaplab")


def resolve_worker_count(workers: int | None) -> int:
    try:
        cpu_total = int(os.cpu_count() or 1)
    except Exception:
        cpu_total = 1
    if workers is None:
        return max(1, cpu_total - 1)
    try:
        workers_i = int(workers)
    except (TypeError, ValueError):
        return max(1, cpu_total - 1)
    if workers_i <= 0:
        return max(1, cpu_total - 1)
    return max(1, min(workers_i, cpu_total))


def passes_threshold(values, threshold: float, direction: str = DIRECTION_FAVORABLE):
    """Inclusive threshold test: ``<=`` for favorable maps, ``>=`` for exclusion maps."""
    if normalize_direction(direction) == DIRECTION_FAVORABLE:
        return np.asarray(values) <= threshold
    return np.asarray(values) >= threshold


def _chunk_slabs(k_indices: np.ndarray, n_chunks: int) -> List[np.ndarray]:
    if n_chunks <= 1 or len(k_indices) <= 1:
        return [k_indices]
    n_chunks = max(1, min(n_chunks, len(k_indices)))
    chunk_size = max(1, int(np.ceil(len(k_indices) / n_chunks)))
    return [k_indices[i : i + chunk_size] for i in range(0, len(k_indices), chunk_size)]


def _sample_slab(
    values_3d: np.ndarray,
    k_indices: np.ndarray,
    stride: int,
    threshold: float,
    direction: str,
) -> Tuple[np.ndarray, np.ndarray]:
    k_start = int(k_indices[0])
    k_stop = int(k_indices[-1]) + 1
    block = values_3d[k_start:k_stop:stride, ::stride, ::stride]
    mask = passes_threshold(block, threshold, direction)
    # nonzero walks the (z, y, x) block in C order, i.e. x fastest
    kk, jj, ii = np.nonzero(mask)
    indices = np.column_stack([ii * stride, jj * stride, k_start + kk * stride]).astype(np.int64)
    return indices, block[mask]


def sample_grid(
    grid: ScalarGrid,
    threshold: float,
    direction: str = DIRECTION_FAVORABLE,
    stride: int = 1,
    max_points: Optional[int] = None,
    workers: Optional[int] = 1,
) -> PointSet:
    """Collect grid points whose value passes ``threshold``.

    Every ``stride``-th node is visited along each axis independently, starting at
    index 0. Points are emitted in traversal order (x fastest). When more than
    ``max_points`` pass, the most favorable ones are kept: a stable sort ascending by
    value for favorable maps, descending for exclusion maps, then truncation. Ties keep
    traversal order, so repeated calls return identical sequences.
    """
    direction = normalize_direction(direction)
    if int(stride) < 1:
        raise ValueError(f"stride must be >= 1, got {stride}")
    if max_points is not None and int(max_points) < 1:
        raise ValueError(f"max_points must be >= 1, got {max_points}")
    if grid.n_values != grid.expected_size:
        raise ValueError(
            f"{grid.source or '<grid>'}: grid holds {grid.n_values} values but dimensions need "
            f"{grid.expected_size}; validate the grid before sampling"
        )
    stride = int(stride)

    values_3d = grid.values_3d
    k_indices = np.arange(0, grid.nz, stride)
    shards = _chunk_slabs(k_indices, resolve_worker_count(workers))

    if len(shards) == 1:
        parts = [_sample_slab(values_3d, shards[0], stride, threshold, direction)]
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=len(shards)) as executor:
            futures = [
                executor.submit(_sample_slab, values_3d, shard, stride, threshold, direction)
                for shard in shards
            ]
            # collected in shard order so the merge matches single-threaded traversal
            parts = [future.result() for future in futures]

    indices = np.concatenate([part[0] for part in parts]) if parts else np.zeros((0, 3), dtype=np.int64)
    values = np.concatenate([part[1] for part in parts]) if parts else np.zeros(0, dtype=np.float32)
    candidates = int(values.size)

    if max_points is not None and candidates > int(max_points):
        if direction == DIRECTION_FAVORABLE:
            order = np.argsort(values, kind="stable")
        else:
            order = np.argsort(-values, kind="stable")
        order = order[: int(max_points)]
        indices = indices[order]
        values = values[order]
        logger.debug(
            "%s: kept %d of %d points passing %s threshold %.3f",
            grid.source or "<grid>",
            len(values),
            candidates,
            direction,
            threshold,
        )

    return PointSet(
        positions=to_world_array(grid, indices),
        values=values,
        grid_indices=indices,
    )
