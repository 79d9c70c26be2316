"""FragMap loading, sampling and region filtering pipeline."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from fragmap.errors import FatalGridError, GridParseError, GridWarning
from fragmap.export import grid_cache_key, read_cached_grid, write_cached_grid
from fragmap.models import (
    FragMapSpec,
    PipelineConfig,
    PointSet,
    ReferenceAnchor,
    ScalarGrid,
    normalize_direction,
)
from fragmap.parser import detect_format, normalize_format
from fragmap.preflight import run_preflight
from fragmap.region import apply_region_options
from fragmap.sampler import sample_grid
from fragmap.stats import GridStatistics, quality_score, recommended_iso_value
from fragmap.structure import anchors_from_records, anchors_within, load_residue_anchors
from fragmap.validation import ValidationReport, load_grid, log_warnings, validate_grid

try:
    import yaml
except Exception:  # pragma: no cover - optional dependency in practice
    yaml = None


ProgressCallback = Callable[[int, int, str], None]
PROGRESS_RESERVE_UNITS = 2


@dataclass
class FragMapResult:
    spec: FragMapSpec
    grid: ScalarGrid
    statistics: GridStatistics
    warnings: List[GridWarning]
    threshold: float
    direction: str
    points: PointSet
    filtered: Optional[PointSet] = None
    recommended_iso_value: float = 0.0
    quality_score: int = 0
    from_cache: bool = False

    @property
    def final_points(self) -> PointSet:
        return self.filtered if self.filtered is not None else self.points

    def summary(self) -> Dict[str, object]:
        return {
            "id": self.spec.id,
            "name": self.spec.name,
            "path": self.spec.path,
            "grid": self.grid.describe(),
            "statistics": self.statistics.to_dict(),
            "threshold": self.threshold,
            "direction": self.direction,
            "n_points": len(self.points),
            "n_filtered": len(self.filtered) if self.filtered is not None else None,
            "recommended_iso_value": self.recommended_iso_value,
            "quality_score": self.quality_score,
            "from_cache": self.from_cache,
            "warnings": [warning.to_dict() for warning in self.warnings],
        }


@dataclass
class PipelineResult:
    fragmap_results: Dict[str, FragMapResult] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)
    anchors: List[ReferenceAnchor] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def describe_failure(path: str, exc: BaseException) -> str:
    detail = getattr(exc, "detail", None) or str(exc)
    return f"{path}: {type(exc).__name__}: {detail}"


class FragMapPipeline:
    def __init__(self, config: PipelineConfig):
        self.config = config

    def _load_anchors(self, logger: logging.Logger) -> List[ReferenceAnchor]:
        anchor_cfg = self.config.anchors
        anchors: List[ReferenceAnchor] = anchors_from_records(anchor_cfg.points)
        if anchor_cfg.structure:
            anchors.extend(load_residue_anchors(anchor_cfg.structure, anchor_cfg.selection))
        if anchor_cfg.near is not None:
            anchors = anchors_within(anchors, anchor_cfg.near, anchor_cfg.radius)
            logger.info(
                "%d anchors within %.1f A of %s",
                len(anchors),
                anchor_cfg.radius,
                tuple(anchor_cfg.near),
            )
        return anchors

    def _load_grid(self, spec: FragMapSpec, logger: logging.Logger) -> tuple[ValidationReport, bool]:
        fmt = normalize_format(spec.format) if spec.format else detect_format(spec.path)
        cache_dir = self.config.outputs.cache_dir
        if not cache_dir:
            return load_grid(spec.path, fmt=fmt, options=self.config.parse), False

        cache_key = grid_cache_key(spec.path, self.config.parse.to_dict(), fmt)
        cached = read_cached_grid(cache_dir, spec.id, cache_key)
        if cached is not None:
            report = validate_grid(cached["grid"])
            report.warnings = [GridWarning(**item) for item in cached["warnings"]]
            log_warnings(report.warnings, report.grid.source)
            logger.info("Loaded %s from cache", spec.path)
            return report, True

        report = load_grid(spec.path, fmt=fmt, options=self.config.parse)
        write_cached_grid(
            cache_dir,
            spec.id,
            cache_key,
            report.grid,
            [warning.to_dict() for warning in report.warnings],
        )
        return report, False

    def process_fragmap(
        self,
        spec: FragMapSpec,
        anchors: List[ReferenceAnchor],
        logger: logging.Logger,
    ) -> FragMapResult:
        report, from_cache = self._load_grid(spec, logger)
        direction = normalize_direction(spec.direction)
        sampling = self.config.sampling
        points = sample_grid(
            report.grid,
            spec.iso_value,
            direction=direction,
            stride=sampling.stride,
            max_points=sampling.max_points,
            workers=sampling.workers,
        )
        logger.info(
            "FragMap %s: %d points pass %s threshold %.3f (stride %d)",
            spec.id,
            len(points),
            direction,
            spec.iso_value,
            sampling.stride,
        )

        filtered = None
        if self.config.region.enabled:
            filtered = apply_region_options(points, anchors, self.config.region, direction)
            logger.info(
                "FragMap %s: region filter (%s) kept %d of %d points",
                spec.id,
                self.config.region.mode,
                len(filtered),
                len(points),
            )

        return FragMapResult(
            spec=spec,
            grid=report.grid,
            statistics=report.statistics,
            warnings=report.warnings,
            threshold=spec.iso_value,
            direction=direction,
            points=points,
            filtered=filtered,
            recommended_iso_value=recommended_iso_value(report.statistics),
            quality_score=quality_score(report.statistics),
            from_cache=from_cache,
        )

    def run(
        self,
        progress: Optional[ProgressCallback] = None,
        logger: Optional[logging.Logger] = None,
    ) -> PipelineResult:
        logger = logger or logging.getLogger("fragmaplab")
        preflight = run_preflight(self.config)
        if not preflight.ok:
            raise ValueError("Preflight failed: " + "; ".join(preflight.errors))

        result = PipelineResult(warnings=list(preflight.warnings))
        total = len(self.config.fragmaps) + PROGRESS_RESERVE_UNITS
        if progress:
            progress(0, total, "Loading anchors")

        if self.config.region.enabled or self.config.anchors.is_configured:
            result.anchors = self._load_anchors(logger)
            logger.info("Reference anchors: %d", len(result.anchors))
        if progress:
            progress(1, total, "Anchors ready")

        for index, spec in enumerate(self.config.fragmaps, start=1):
            try:
                result.fragmap_results[spec.id] = self.process_fragmap(spec, result.anchors, logger)
            except (GridParseError, FatalGridError, OSError) as exc:
                message = describe_failure(spec.path, exc)
                result.failures[spec.id] = message
                logger.error("FragMap %s failed: %s", spec.id, message)
            if progress:
                progress(index + 1, total, f"FragMap {spec.id}")

        if progress:
            progress(total, total, "Done")
        logger.info(
            "Pipeline finished: %d loaded, %d failed",
            len(result.fragmap_results),
            len(result.failures),
        )
        return result


def write_pipeline_config(config: PipelineConfig, path: str) -> None:
    dirpath = os.path.dirname(path)
    if dirpath:
        os.makedirs(dirpath, exist_ok=True)
    data = config.to_dict()
    if path.endswith((".yaml", ".yml")) and yaml is not None:
        with open(path, "w", encoding="utf-8") as handle:
            yaml.safe_dump(data, handle, sort_keys=False)
    else:
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)


def load_pipeline_config(path: str) -> PipelineConfig:
    with open(path, "r", encoding="utf-8") as handle:
        if path.endswith((".yaml", ".yml")) and yaml is not None:
            data = yaml.safe_load(handle)
        else:
            data = json.load(handle)
    return PipelineConfig.from_dict(data or {})
