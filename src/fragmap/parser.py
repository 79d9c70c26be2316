"""Parsers for native SILCS ``.map`` and OpenDX ``.dx`` FragMap grids."""
from __future__ import annotations

import logging
import os
import re
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from fragmap.coords import derive_origin
from fragmap.errors import GridParseError, GridWarning
from fragmap.models import FORMAT_NATIVE, FORMAT_OPENDX, ParseOptions, ScalarGrid

logger = logging.getLogger("fragmaplab")

DX_AXIS_ORDERS = ("x_fastest", "z_fastest")

_FORMAT_ALIASES = {
    "native": FORMAT_NATIVE,
    "map": FORMAT_NATIVE,
    "opendx": FORMAT_OPENDX,
    "dx": FORMAT_OPENDX,
}
_EXTENSION_FORMATS = {
    ".map": FORMAT_NATIVE,
    ".dx": FORMAT_OPENDX,
}
_DATA_START = re.compile(r"^[\d.+\-]")
_DX_OBJECT_CLASS = re.compile(r"\bclass\s+(gridpositions|gridconnections|grid|array|field)\b")
_DX_STOP_WORDS = ("attribute", "object", "component")

ParseResult = Tuple[ScalarGrid, List[GridWarning]]


def normalize_format(fmt: str) -> str:
    key = str(fmt).strip().lower()
    if key not in _FORMAT_ALIASES:
        raise GridParseError(f"unsupported grid format {fmt!r} (expected native or opendx)")
    return _FORMAT_ALIASES[key]


def detect_format(path: str) -> str:
    ext = os.path.splitext(str(path))[1].lower()
    if ext not in _EXTENSION_FORMATS:
        raise GridParseError(
            f"cannot detect grid format from extension {ext or '<none>'!r}; expected .map or .dx",
            source=os.path.basename(str(path)),
        )
    return _EXTENSION_FORMATS[ext]


def _is_number(token: str) -> bool:
    try:
        float(token)
    except ValueError:
        return False
    return True


def _floats(tokens: Sequence[str], what: str, count: int, source: Optional[str]) -> Tuple[float, ...]:
    if len(tokens) != count:
        raise GridParseError(f"{what} expects {count} values, got {len(tokens)}: {' '.join(tokens)!r}", source)
    try:
        return tuple(float(tok) for tok in tokens)
    except ValueError as exc:
        raise GridParseError(f"{what} has a non-numeric value: {' '.join(tokens)!r}", source) from exc


def _ints(tokens: Sequence[str], what: str, source: Optional[str]) -> Tuple[int, int, int]:
    if len(tokens) != 3:
        raise GridParseError(f"{what} expects 3 integers, got {len(tokens)}: {' '.join(tokens)!r}", source)
    try:
        return tuple(int(tok) for tok in tokens)  # type: ignore[return-value]
    except ValueError as exc:
        raise GridParseError(f"{what} must be integers: {' '.join(tokens)!r}", source) from exc


def _convert_tokens(tokens: List[str], warnings: List[GridWarning]) -> np.ndarray:
    """Convert data tokens to float32, dropping and reporting unparseable ones."""
    if not tokens:
        return np.zeros(0, dtype=np.float32)
    try:
        return np.asarray(tokens, dtype=np.float64).astype(np.float32)
    except ValueError:
        pass
    kept: List[float] = []
    dropped = 0
    first_bad: Optional[str] = None
    for token in tokens:
        try:
            kept.append(float(token))
        except ValueError:
            dropped += 1
            if first_bad is None:
                first_bad = token
    warnings.append(
        GridWarning(
            "dropped_tokens",
            f"dropped {dropped} non-numeric data token(s); first was {first_bad!r}",
            {"dropped": dropped, "first": first_bad},
        )
    )
    return np.asarray(kept, dtype=np.float32)


def parse_native(text: str, options: Optional[ParseOptions] = None, source: Optional[str] = None) -> ParseResult:
    """Parse a SILCS ``.map`` grid (SPACING / NELEMENTS / CENTER header)."""
    options = options or ParseOptions()
    warnings: List[GridWarning] = []
    metadata: Dict[str, str] = {}
    dimensions: Optional[Tuple[int, int, int]] = None
    spacing: Optional[float] = None
    center: Optional[Tuple[float, ...]] = None
    tokens: List[str] = []
    in_header = True

    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if in_header:
            parts = line.split()
            if _DATA_START.match(line) or _is_number(parts[0]):
                in_header = False
            else:
                key, rest = parts[0], parts[1:]
                upper = key.upper()
                if upper == "NELEMENTS":
                    dimensions = _ints(rest, "NELEMENTS", source)
                elif upper == "SPACING":
                    if not rest:
                        raise GridParseError("SPACING has no value", source)
                    spacing = _floats(rest[:1], "SPACING", 1, source)[0]
                elif upper == "CENTER":
                    center = _floats(rest, "CENTER", 3, source)
                else:
                    metadata[key] = " ".join(rest)
                continue
        tokens.extend(line.split())

    if dimensions is None:
        raise GridParseError("missing required header key NELEMENTS", source)
    if spacing is None:
        raise GridParseError("missing required header key SPACING", source)
    if center is None:
        center = (0.0, 0.0, 0.0)
        warnings.append(GridWarning("missing_center", "no CENTER in header; assuming (0, 0, 0)"))

    values = _convert_tokens(tokens, warnings)
    spacing3 = (spacing, spacing, spacing)
    origin = derive_origin(center, dimensions, spacing3, options.center_convention)
    grid = ScalarGrid(
        dimensions=dimensions,
        spacing=spacing3,
        origin=origin,
        values=values,
        source_format=FORMAT_NATIVE,
        center=tuple(center),  # type: ignore[arg-type]
        metadata=metadata,
        source=source,
    )
    return grid, warnings


def _dx_items(parts: Sequence[str], source: Optional[str]) -> Optional[int]:
    if "items" not in parts:
        return None
    idx = parts.index("items")
    try:
        return int(parts[idx + 1])
    except (IndexError, ValueError) as exc:
        raise GridParseError(f"invalid 'items' count in line {' '.join(parts)!r}", source) from exc


def _dx_reorder_z_fastest(values: np.ndarray, dimensions: Tuple[int, int, int], source: Optional[str]) -> np.ndarray:
    nx, ny, nz = dimensions
    if values.size != nx * ny * nz:
        raise GridParseError(
            f"cannot reorder {values.size} z-fastest values into a {nx}x{ny}x{nz} grid",
            source,
        )
    return np.ascontiguousarray(values.reshape((nx, ny, nz)).transpose(2, 1, 0)).reshape(-1)


def parse_opendx(text: str, options: Optional[ParseOptions] = None, source: Optional[str] = None) -> ParseResult:
    """Parse an OpenDX scalar field with an axis-aligned regular grid."""
    options = options or ParseOptions()
    if options.dx_axis_order not in DX_AXIS_ORDERS:
        raise ValueError(f"Unsupported dx_axis_order: {options.dx_axis_order!r}")
    warnings: List[GridWarning] = []
    metadata: Dict[str, str] = {}
    counts: Optional[Tuple[int, int, int]] = None
    connections: Optional[Tuple[int, int, int]] = None
    origin: Optional[Tuple[float, ...]] = None
    deltas: List[Tuple[float, ...]] = []
    items: Optional[int] = None
    data_start: Optional[int] = None

    lines = text.splitlines()
    for lineno, raw in enumerate(lines):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        keyword = parts[0].lower()
        if keyword == "object":
            match = _DX_OBJECT_CLASS.search(line)
            kind = match.group(1) if match else ""
            if kind in ("gridpositions", "grid") and "counts" in parts:
                idx = parts.index("counts")
                counts = _ints(parts[idx + 1:idx + 4], "gridpositions counts", source)
            elif kind == "gridconnections" and "counts" in parts:
                idx = parts.index("counts")
                connections = _ints(parts[idx + 1:idx + 4], "gridconnections counts", source)
            elif kind == "array" and "follows" in parts:
                items = _dx_items(parts, source)
                data_start = lineno + 1
                break
        elif keyword == "origin":
            origin = _floats(parts[1:], "origin", 3, source)
        elif keyword == "delta":
            deltas.append(_floats(parts[1:], "delta", 3, source))
        elif keyword not in ("attribute", "component"):
            metadata[f"line{lineno + 1}"] = line

    if counts is None:
        raise GridParseError("missing 'object ... class gridpositions counts nx ny nz' header", source)
    if data_start is None:
        raise GridParseError("missing 'class array ... data follows' section", source)
    if connections is not None and connections != counts:
        warnings.append(
            GridWarning(
                "grid_connections_mismatch",
                f"gridconnections counts {connections} differ from gridpositions counts {counts}",
                {"positions": list(counts), "connections": list(connections)},
            )
        )
    if origin is None:
        origin = (0.0, 0.0, 0.0)
        warnings.append(GridWarning("missing_origin", "no origin in header; assuming (0, 0, 0)"))
    if len(deltas) != 3:
        raise GridParseError(f"expected 3 delta lines, found {len(deltas)}", source)
    spacing = []
    for axis, delta in enumerate(deltas):
        off_axis = [value for n, value in enumerate(delta) if n != axis]
        if any(value != 0.0 for value in off_axis):
            raise GridParseError(
                f"delta {axis + 1} {delta} is not axis-aligned; only orthogonal x/y/z grids are supported",
                source,
            )
        spacing.append(delta[axis])

    tokens: List[str] = []
    for raw in lines[data_start:]:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.split()[0].lower() in _DX_STOP_WORDS:
            break
        tokens.extend(line.split())
        if items is not None and len(tokens) >= items:
            break
    if items is not None:
        tokens = tokens[:items]

    values = _convert_tokens(tokens, warnings)
    if items is not None and values.size < items:
        logger.debug("%s: DX declared %d items but %d were read", source or "<text>", items, values.size)
    if options.dx_axis_order == "z_fastest":
        values = _dx_reorder_z_fastest(values, counts, source)

    grid = ScalarGrid(
        dimensions=counts,
        spacing=tuple(spacing),  # type: ignore[arg-type]
        origin=tuple(origin),  # type: ignore[arg-type]
        values=values,
        source_format=FORMAT_OPENDX,
        center=None,
        metadata=metadata,
        source=source,
    )
    return grid, warnings


def parse_grid_text(
    text: str,
    fmt: str,
    options: Optional[ParseOptions] = None,
    source: Optional[str] = None,
) -> ParseResult:
    """Parse raw grid text. Returns the (unvalidated) grid and parse warnings."""
    if normalize_format(fmt) == FORMAT_NATIVE:
        return parse_native(text, options=options, source=source)
    return parse_opendx(text, options=options, source=source)


def read_grid_file(path: str, fmt: Optional[str] = None, options: Optional[ParseOptions] = None) -> ParseResult:
    fmt = normalize_format(fmt) if fmt else detect_format(path)
    source = os.path.basename(str(path))
    try:
        with open(path, "r", encoding="utf-8") as handle:
            text = handle.read()
    except UnicodeDecodeError as exc:
        raise GridParseError(f"not valid UTF-8 text: {exc}", source) from exc
    logger.debug("Read %d characters from %s", len(text), path)
    return parse_grid_text(text, fmt, options=options, source=source)
