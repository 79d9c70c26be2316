"""Grid index <-> world coordinate mapping.

All index/offset arithmetic for FragMap grids lives here so the parser, sampler,
exporter and region filter agree on one layout: flat offset ``i + j*nx + k*nx*ny``
(x fastest, z slowest) and ``world = origin + index * spacing``.

Native ``.map`` files carry a grid CENTER instead of an origin. Two conventions
exist for turning that center into the world position of index (0, 0, 0):

``half_open`` (default)
    ``origin = center - n * spacing / 2``. The grid spans ``[origin, origin + n*spacing)``
    and the center sits at the middle of that half-open box.
``centered``
    ``origin = center - (n - 1) * spacing / 2``. The center coincides with the middle
    grid node.
"""
from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

from fragmap.models import ScalarGrid, Vector3

CENTER_CONVENTION_HALF_OPEN = "half_open"
CENTER_CONVENTION_CENTERED = "centered"
CENTER_CONVENTIONS = (CENTER_CONVENTION_HALF_OPEN, CENTER_CONVENTION_CENTERED)
DEFAULT_CENTER_CONVENTION = CENTER_CONVENTION_HALF_OPEN


def _check_convention(convention: str) -> str:
    if convention not in CENTER_CONVENTIONS:
        raise ValueError(
            f"Unknown center convention {convention!r}; expected one of {', '.join(CENTER_CONVENTIONS)}"
        )
    return convention


def _span(dimensions: Sequence[int], convention: str) -> np.ndarray:
    dims = np.asarray(dimensions, dtype=float)
    if _check_convention(convention) == CENTER_CONVENTION_CENTERED:
        return dims - 1.0
    return dims


def derive_origin(
    center: Sequence[float],
    dimensions: Sequence[int],
    spacing: Sequence[float],
    convention: str = DEFAULT_CENTER_CONVENTION,
) -> Vector3:
    origin = np.asarray(center, dtype=float) - _span(dimensions, convention) * np.asarray(spacing, dtype=float) / 2.0
    return tuple(float(v) for v in origin)  # type: ignore[return-value]


def derive_center(
    origin: Sequence[float],
    dimensions: Sequence[int],
    spacing: Sequence[float],
    convention: str = DEFAULT_CENTER_CONVENTION,
) -> Vector3:
    """Inverse of :func:`derive_origin`."""
    center = np.asarray(origin, dtype=float) + _span(dimensions, convention) * np.asarray(spacing, dtype=float) / 2.0
    return tuple(float(v) for v in center)  # type: ignore[return-value]


def flat_offset(dimensions: Sequence[int], i: int, j: int, k: int) -> int:
    nx, ny, nz = (int(v) for v in dimensions)
    if not (0 <= i < nx and 0 <= j < ny and 0 <= k < nz):
        raise IndexError(f"Grid index ({i}, {j}, {k}) outside dimensions ({nx}, {ny}, {nz})")
    return int(i) + int(j) * nx + int(k) * nx * ny


def unravel_offset(dimensions: Sequence[int], offset: int) -> Tuple[int, int, int]:
    nx, ny, nz = (int(v) for v in dimensions)
    if not 0 <= offset < nx * ny * nz:
        raise IndexError(f"Flat offset {offset} outside grid of {nx * ny * nz} values")
    k, rem = divmod(int(offset), nx * ny)
    j, i = divmod(rem, nx)
    return i, j, k


def to_world(grid: ScalarGrid, i: float, j: float, k: float) -> Vector3:
    ox, oy, oz = grid.origin
    sx, sy, sz = grid.spacing
    return (ox + i * sx, oy + j * sy, oz + k * sz)


def to_world_array(grid: ScalarGrid, indices: np.ndarray) -> np.ndarray:
    """Vectorized :func:`to_world` for an ``(N, 3)`` array of ``(i, j, k)`` indices."""
    indices = np.asarray(indices, dtype=np.float64).reshape(-1, 3)
    return np.asarray(grid.origin, dtype=np.float64) + indices * np.asarray(grid.spacing, dtype=np.float64)


def to_index(grid: ScalarGrid, x: float, y: float, z: float) -> Vector3:
    """Fractional grid index of a world position."""
    ox, oy, oz = grid.origin
    sx, sy, sz = grid.spacing
    return ((x - ox) / sx, (y - oy) / sy, (z - oz) / sz)


def grid_axes(grid: ScalarGrid) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """World coordinates of the grid nodes along x, y and z."""
    return tuple(  # type: ignore[return-value]
        grid.origin[axis] + np.arange(grid.dimensions[axis], dtype=np.float64) * grid.spacing[axis]
        for axis in range(3)
    )


def grid_bounds(grid: ScalarGrid) -> Tuple[Vector3, Vector3]:
    """Lowest and highest grid node positions."""
    lower = tuple(float(v) for v in grid.origin)
    upper = tuple(
        float(grid.origin[axis] + (grid.dimensions[axis] - 1) * grid.spacing[axis])
        for axis in range(3)
    )
    return lower, upper  # type: ignore[return-value]
