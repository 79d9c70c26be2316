"""Pre-flight checks for FragMapLab pipeline configurations."""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from typing import Dict, List

from fragmap.errors import GridParseError
from fragmap.models import (
    DIRECTION_EXCLUSION,
    DIRECTION_FAVORABLE,
    FragMapSpec,
    PipelineConfig,
    normalize_direction,
)
from fragmap.coords import CENTER_CONVENTIONS
from fragmap.parser import DX_AXIS_ORDERS, detect_format, normalize_format
from fragmap.region import REGION_MODE_BOUNDING_BOX, REGION_MODE_RANKED

logger = logging.getLogger("fragmaplab")


@dataclass
class FileCheck:
    fragmap_id: str
    path: str
    exists: bool
    readable: bool
    format: str | None
    size_bytes: int | None = None
    problems: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "fragmap_id": self.fragmap_id,
            "path": self.path,
            "exists": self.exists,
            "readable": self.readable,
            "format": self.format,
            "size_bytes": self.size_bytes,
            "problems": list(self.problems),
        }


@dataclass
class PreflightReport:
    ok: bool
    errors: List[str]
    warnings: List[str]
    file_checks: Dict[str, FileCheck]
    anchor_summary: Dict[str, object]

    def to_dict(self) -> Dict[str, object]:
        return {
            "ok": self.ok,
            "errors": self.errors,
            "warnings": self.warnings,
            "file_checks": {k: v.to_dict() for k, v in self.file_checks.items()},
            "anchor_summary": self.anchor_summary,
        }


def _check_file(spec: FragMapSpec) -> FileCheck:
    path = spec.path
    exists = bool(path) and os.path.isfile(path)
    readable = exists and os.access(path, os.R_OK)
    check = FileCheck(
        fragmap_id=spec.id,
        path=path,
        exists=exists,
        readable=readable,
        format=None,
        size_bytes=os.path.getsize(path) if exists else None,
    )
    if not path:
        check.problems.append("no path configured")
    elif not exists:
        check.problems.append(f"file not found: {path}")
    elif not readable:
        check.problems.append(f"file not readable: {path}")
    try:
        check.format = normalize_format(spec.format) if spec.format else detect_format(path)
    except GridParseError as exc:
        check.problems.append(str(exc))
    return check


def _check_thresholds(spec: FragMapSpec, errors: List[str], warnings: List[str]) -> None:
    try:
        direction = normalize_direction(spec.direction)
    except ValueError as exc:
        errors.append(f"FragMap '{spec.id}': {exc}")
        return
    if spec.min_iso_value > spec.max_iso_value:
        errors.append(
            f"FragMap '{spec.id}': min_iso_value {spec.min_iso_value} exceeds max_iso_value {spec.max_iso_value}"
        )
    elif not spec.min_iso_value <= spec.iso_value <= spec.max_iso_value:
        warnings.append(
            f"FragMap '{spec.id}': iso value {spec.iso_value} outside slider range "
            f"[{spec.min_iso_value}, {spec.max_iso_value}]"
        )
    if direction == DIRECTION_FAVORABLE and spec.iso_value > 0:
        warnings.append(
            f"FragMap '{spec.id}': favorable map with positive iso value {spec.iso_value}; "
            "check that the direction is correct"
        )
    if direction == DIRECTION_EXCLUSION and spec.iso_value < 0:
        warnings.append(
            f"FragMap '{spec.id}': exclusion map with negative iso value {spec.iso_value}; "
            "check that the direction is correct"
        )


def run_preflight(config: PipelineConfig) -> PreflightReport:
    errors: List[str] = []
    warnings: List[str] = []
    file_checks: Dict[str, FileCheck] = {}

    if not config.fragmaps:
        errors.append("No FragMaps configured.")

    seen: Dict[str, int] = {}
    for spec in config.fragmaps:
        seen[spec.id] = seen.get(spec.id, 0) + 1
    for fragmap_id, count in seen.items():
        if count > 1:
            errors.append(f"FragMap id '{fragmap_id}' is used {count} times; ids must be unique.")

    for spec in config.fragmaps:
        check = _check_file(spec)
        file_checks[spec.id] = check
        for problem in check.problems:
            errors.append(f"FragMap '{spec.id}': {problem}")
        _check_thresholds(spec, errors, warnings)

    if config.parse.center_convention not in CENTER_CONVENTIONS:
        errors.append(f"Unknown center convention: {config.parse.center_convention!r}")
    if config.parse.dx_axis_order not in DX_AXIS_ORDERS:
        errors.append(f"Unknown dx_axis_order: {config.parse.dx_axis_order!r}")

    sampling = config.sampling
    if sampling.stride < 1:
        errors.append(f"Sampling stride must be >= 1 (got {sampling.stride}).")
    if sampling.max_points is not None and sampling.max_points < 1:
        errors.append(f"Sampling max_points must be >= 1 (got {sampling.max_points}).")

    region = config.region
    anchors = config.anchors
    anchor_summary: Dict[str, object] = {
        "structure": anchors.structure,
        "structure_exists": bool(anchors.structure) and os.path.isfile(anchors.structure),
        "selection": anchors.selection,
        "n_points": len(anchors.points),
        "near": anchors.near,
        "radius": anchors.radius,
    }
    if region.enabled:
        if region.mode not in (REGION_MODE_RANKED, REGION_MODE_BOUNDING_BOX):
            errors.append(f"Unknown region mode: {region.mode!r}")
        if region.max_distance <= 0:
            errors.append(f"Region max_distance must be > 0 (got {region.max_distance}).")
        if region.max_points < 1:
            errors.append(f"Region max_points must be >= 1 (got {region.max_points}).")
        weights = region.weights
        if weights.proximity < 0 or weights.value < 0:
            errors.append("Region score weights must be non-negative.")
        elif weights.proximity + weights.value <= 0:
            errors.append("Region score weights must not both be zero.")
        if region.value_best == region.value_worst:
            errors.append("Region value_best and value_worst must differ.")
        if anchors.structure and not anchor_summary["structure_exists"]:
            errors.append(f"Anchor structure not found: {anchors.structure}")
        if not anchors.is_configured:
            warnings.append("Region filtering is enabled but no anchors are configured; filtered sets will be empty.")
        if anchors.near is not None and len(anchors.near) != 3:
            errors.append("Anchor 'near' point must have 3 coordinates.")
        if anchors.radius <= 0:
            errors.append(f"Anchor radius must be > 0 (got {anchors.radius}).")

    ok = len(errors) == 0
    if errors:
        for error in errors:
            logger.error("Preflight error: %s", error)
    for warning in warnings:
        logger.warning("Preflight warning: %s", warning)

    return PreflightReport(
        ok=ok,
        errors=errors,
        warnings=warnings,
        file_checks=file_checks,
        anchor_summary=anchor_summary,
    )
