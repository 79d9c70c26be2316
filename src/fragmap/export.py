"""Export utilities for FragMapLab results, OpenDX writing and the grid cache."""
from __future__ import annotations

import json
import logging
import os
import zipfile
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import numpy as np
import pandas as pd

from fragmap.models import PipelineConfig, PointSet, ScalarGrid
from fragmap.serialization import to_jsonable

if TYPE_CHECKING:
    from fragmap.pipeline import PipelineResult

logger = logging.getLogger("fragmaplab")

DX_VALUES_PER_LINE = 6
CACHE_VERSION = 1


def _atomic_replace(temp_path: str, final_path: str) -> None:
    os.replace(temp_path, final_path)


def _write_json(payload: Any, path: str) -> None:
    temp_path = path + ".tmp"
    with open(temp_path, "w", encoding="utf-8") as handle:
        json.dump(to_jsonable(payload), handle, indent=2)
    _atomic_replace(temp_path, path)


def _write_dataframe(df: pd.DataFrame, path_csv: str) -> None:
    temp_csv = path_csv + ".tmp"
    df.to_csv(temp_csv, index=False)
    _atomic_replace(temp_csv, path_csv)


def write_points_csv(points: PointSet, path: str) -> str:
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    _write_dataframe(points.to_dataframe(), path)
    return path


def _fmt(value: float) -> str:
    return repr(float(value))


def format_opendx(grid: ScalarGrid, axis_order: str = "x_fastest", name: Optional[str] = None) -> str:
    """Render a grid as OpenDX text.

    ``x_fastest`` writes values in the native flat order; ``z_fastest`` writes the
    ordering most OpenDX readers (VMD, APBS) expect.
    """
    nx, ny, nz = grid.dimensions
    if axis_order == "x_fastest":
        values = np.asarray(grid.values).reshape(-1)
    elif axis_order == "z_fastest":
        values = np.asarray(grid.values_3d).transpose(2, 1, 0).reshape(-1)
    else:
        raise ValueError(f"Unsupported axis_order: {axis_order!r}")
    sx, sy, sz = grid.spacing
    label = name or os.path.splitext(grid.source or "fragmap")[0]

    lines: List[str] = [
        f"# FragMapLab grid {label}",
        f"# axis order: {axis_order}",
        f"object 1 class gridpositions counts {nx} {ny} {nz}",
        "origin " + " ".join(_fmt(v) for v in grid.origin),
        f"delta {_fmt(sx)} 0 0",
        f"delta 0 {_fmt(sy)} 0",
        f"delta 0 0 {_fmt(sz)}",
        f"object 2 class gridconnections counts {nx} {ny} {nz}",
        f"object 3 class array type float rank 0 items {values.size} data follows",
    ]
    for start in range(0, values.size, DX_VALUES_PER_LINE):
        row = values[start : start + DX_VALUES_PER_LINE]
        lines.append(" ".join("%.9g" % float(v) for v in row))
    lines.extend(
        [
            'attribute "dep" string "positions"',
            f'object "{label}" class field',
            'component "positions" value 1',
            'component "connections" value 2',
            'component "data" value 3',
        ]
    )
    return "\n".join(lines) + "\n"


def write_opendx(grid: ScalarGrid, path: str, axis_order: str = "x_fastest") -> str:
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    name = os.path.splitext(os.path.basename(path))[0]
    temp_path = path + ".tmp"
    with open(temp_path, "w", encoding="utf-8") as handle:
        handle.write(format_opendx(grid, axis_order=axis_order, name=name))
    _atomic_replace(temp_path, path)
    return path


def grid_cache_key(path: str, parse_options: Dict[str, Any], fmt: Optional[str]) -> Dict[str, Any]:
    stat = os.stat(path)
    return {
        "version": CACHE_VERSION,
        "path": os.path.abspath(path),
        "size": int(stat.st_size),
        "mtime": float(stat.st_mtime),
        "format": fmt,
        "parse": dict(parse_options),
    }


def save_grid_cache(grid: ScalarGrid, path: str) -> str:
    """Store a validated grid as ``.npz`` (values plus geometry and metadata)."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    meta = {
        "source": grid.source,
        "source_format": grid.source_format,
        "center": list(grid.center) if grid.center is not None else None,
        "metadata": dict(grid.metadata),
    }
    temp_path = path + ".tmp.npz"
    np.savez(
        temp_path,
        values=np.asarray(grid.values, dtype=np.float32),
        dimensions=np.asarray(grid.dimensions, dtype=np.int64),
        spacing=np.asarray(grid.spacing, dtype=np.float64),
        origin=np.asarray(grid.origin, dtype=np.float64),
        meta=np.asarray(json.dumps(to_jsonable(meta))),
    )
    _atomic_replace(temp_path, path)
    return path


def load_grid_cache(path: str) -> ScalarGrid:
    with np.load(path, allow_pickle=False) as data:
        meta = json.loads(str(data["meta"]))
        values = np.array(data["values"], dtype=np.float32)
        dimensions = tuple(int(v) for v in data["dimensions"])
        spacing = tuple(float(v) for v in data["spacing"])
        origin = tuple(float(v) for v in data["origin"])
    center = meta.get("center")
    return ScalarGrid(
        dimensions=dimensions,  # type: ignore[arg-type]
        spacing=spacing,  # type: ignore[arg-type]
        origin=origin,  # type: ignore[arg-type]
        values=values,
        source_format="cache",
        center=tuple(center) if center is not None else None,  # type: ignore[arg-type]
        metadata={str(k): str(v) for k, v in (meta.get("metadata") or {}).items()},
        source=meta.get("source"),
    )


def cache_paths(cache_dir: str, fragmap_id: str) -> tuple[str, str]:
    return (
        os.path.join(cache_dir, f"{fragmap_id}.npz"),
        os.path.join(cache_dir, f"{fragmap_id}.cache.json"),
    )


def read_cached_grid(cache_dir: str, fragmap_id: str, cache_key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return ``{"grid", "warnings"}`` if a cache entry matches ``cache_key``."""
    npz_path, key_path = cache_paths(cache_dir, fragmap_id)
    if not (os.path.exists(npz_path) and os.path.exists(key_path)):
        return None
    try:
        with open(key_path, "r", encoding="utf-8") as handle:
            cached = json.load(handle)
    except (OSError, ValueError):
        return None
    if cached.get("config") != to_jsonable(cache_key):
        return None
    try:
        grid = load_grid_cache(npz_path)
    except (OSError, ValueError, KeyError, EOFError, zipfile.BadZipFile) as exc:
        logger.warning("Ignoring unreadable grid cache %s: %s", npz_path, exc)
        return None
    return {"grid": grid, "warnings": cached.get("warnings", [])}


def write_cached_grid(
    cache_dir: str,
    fragmap_id: str,
    cache_key: Dict[str, Any],
    grid: ScalarGrid,
    warnings: List[Dict[str, Any]],
) -> None:
    npz_path, key_path = cache_paths(cache_dir, fragmap_id)
    save_grid_cache(grid, npz_path)
    _write_json({"config": cache_key, "warnings": warnings}, key_path)


def export_results(result: "PipelineResult", config: PipelineConfig) -> None:
    output_dir = config.outputs.output_dir
    os.makedirs(output_dir, exist_ok=True)

    metadata = {
        "config": config.to_dict(),
        "warnings": {
            fragmap_id: [warning.to_dict() for warning in fragmap_result.warnings]
            for fragmap_id, fragmap_result in result.fragmap_results.items()
        },
        "failures": dict(result.failures),
        "anchors": [anchor.to_dict() for anchor in result.anchors],
    }
    _write_json(metadata, os.path.join(output_dir, "metadata.json"))

    for fragmap_id, fragmap_result in result.fragmap_results.items():
        fragmap_dir = os.path.join(output_dir, f"fragmap_{fragmap_id}")
        os.makedirs(fragmap_dir, exist_ok=True)

        if config.outputs.write_points:
            _write_dataframe(fragmap_result.points.to_dataframe(), os.path.join(fragmap_dir, "points.csv"))
            if fragmap_result.filtered is not None:
                _write_dataframe(
                    fragmap_result.filtered.to_dataframe(),
                    os.path.join(fragmap_dir, "filtered_points.csv"),
                )
        _write_json(fragmap_result.summary(), os.path.join(fragmap_dir, "summary.json"))

        if config.outputs.write_dx:
            write_opendx(fragmap_result.grid, os.path.join(fragmap_dir, f"{fragmap_id}.dx"))
