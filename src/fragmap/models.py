"""Data models for FragMapLab grids, point sets and pipeline configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

DIRECTION_FAVORABLE = "favorable"
DIRECTION_EXCLUSION = "exclusion"

_DIRECTION_ALIASES = {
    "favorable": DIRECTION_FAVORABLE,
    "favourable": DIRECTION_FAVORABLE,
    "lower": DIRECTION_FAVORABLE,
    "exclusion": DIRECTION_EXCLUSION,
    "higher": DIRECTION_EXCLUSION,
}

FORMAT_NATIVE = "native"
FORMAT_OPENDX = "opendx"

Vector3 = Tuple[float, float, float]


def normalize_direction(value: str) -> str:
    """Map a direction name (or its legacy alias) onto favorable/exclusion."""
    key = str(value).strip().lower()
    if key not in _DIRECTION_ALIASES:
        raise ValueError(f"Unsupported threshold direction: {value!r}")
    return _DIRECTION_ALIASES[key]


def _vector3(values: Sequence[float]) -> Vector3:
    items = tuple(float(v) for v in values)
    if len(items) != 3:
        raise ValueError(f"Expected 3 components, got {len(items)}")
    return items  # type: ignore[return-value]


@dataclass(frozen=True, eq=False)
class ScalarGrid:
    """Regular 3D scalar field; values are flat with x fastest and z slowest."""
    dimensions: Tuple[int, int, int]
    spacing: Vector3
    origin: Vector3
    values: np.ndarray
    source_format: str = FORMAT_NATIVE
    center: Optional[Vector3] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    source: Optional[str] = None

    @property
    def nx(self) -> int:
        return self.dimensions[0]

    @property
    def ny(self) -> int:
        return self.dimensions[1]

    @property
    def nz(self) -> int:
        return self.dimensions[2]

    @property
    def expected_size(self) -> int:
        return int(self.nx) * int(self.ny) * int(self.nz)

    @property
    def n_values(self) -> int:
        return int(self.values.size)

    @property
    def values_3d(self) -> np.ndarray:
        """(nz, ny, nx) view of the values; only valid once sizes agree."""
        return self.values.reshape((self.nz, self.ny, self.nx))

    def describe(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "format": self.source_format,
            "dimensions": list(self.dimensions),
            "spacing": list(self.spacing),
            "origin": list(self.origin),
            "center": list(self.center) if self.center is not None else None,
            "n_values": self.n_values,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class SamplePoint:
    x: float
    y: float
    z: float
    value: float


@dataclass(frozen=True)
class ReferenceAnchor:
    """Reference location (for example a residue centroid) used for proximity scoring."""
    coordinates: Vector3
    label: str = ""

    @property
    def x(self) -> float:
        return self.coordinates[0]

    @property
    def y(self) -> float:
        return self.coordinates[1]

    @property
    def z(self) -> float:
        return self.coordinates[2]

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "z": self.z, "label": self.label}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReferenceAnchor":
        coords = data.get("coordinates")
        if isinstance(coords, dict):
            xyz = (coords.get("x", 0.0), coords.get("y", 0.0), coords.get("z", 0.0))
        elif coords is not None:
            xyz = coords
        else:
            xyz = (data.get("x", 0.0), data.get("y", 0.0), data.get("z", 0.0))
        return cls(coordinates=_vector3(xyz), label=str(data.get("label", "")))


@dataclass(frozen=True, eq=False)
class PointSet:
    """Ordered, immutable set of sampled grid points stored column-wise."""
    positions: np.ndarray
    values: np.ndarray
    grid_indices: Optional[np.ndarray] = None
    scores: Dict[str, np.ndarray] = field(default_factory=dict)

    def __post_init__(self) -> None:
        positions = np.asarray(self.positions, dtype=np.float64).reshape(-1, 3)
        values = np.asarray(self.values, dtype=np.float32).reshape(-1)
        if len(positions) != len(values):
            raise ValueError(
                f"PointSet positions ({len(positions)}) and values ({len(values)}) differ in length"
            )
        positions.flags.writeable = False
        values.flags.writeable = False
        object.__setattr__(self, "positions", positions)
        object.__setattr__(self, "values", values)
        if self.grid_indices is not None:
            indices = np.asarray(self.grid_indices, dtype=np.int64).reshape(-1, 3)
            indices.flags.writeable = False
            object.__setattr__(self, "grid_indices", indices)
        frozen_scores = {}
        for name, column in self.scores.items():
            column = np.asarray(column, dtype=np.float64).reshape(-1)
            if len(column) != len(values):
                raise ValueError(f"Score column {name!r} has {len(column)} rows, expected {len(values)}")
            column.flags.writeable = False
            frozen_scores[name] = column
        object.__setattr__(self, "scores", frozen_scores)

    @classmethod
    def empty(cls) -> "PointSet":
        return cls(positions=np.zeros((0, 3)), values=np.zeros(0, dtype=np.float32))

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def __getitem__(self, index: int) -> SamplePoint:
        x, y, z = self.positions[index]
        return SamplePoint(float(x), float(y), float(z), float(self.values[index]))

    def __iter__(self) -> Iterator[SamplePoint]:
        for index in range(len(self)):
            yield self[index]

    def take(self, order: np.ndarray) -> "PointSet":
        """Return a new PointSet holding the rows selected by ``order``."""
        order = np.asarray(order)
        return PointSet(
            positions=self.positions[order],
            values=self.values[order],
            grid_indices=self.grid_indices[order] if self.grid_indices is not None else None,
            scores={name: column[order] for name, column in self.scores.items()},
        )

    def with_scores(self, **columns: np.ndarray) -> "PointSet":
        scores = dict(self.scores)
        scores.update(columns)
        return PointSet(
            positions=self.positions,
            values=self.values,
            grid_indices=self.grid_indices,
            scores=scores,
        )

    def to_dataframe(self) -> pd.DataFrame:
        data: Dict[str, Any] = {
            "x": self.positions[:, 0],
            "y": self.positions[:, 1],
            "z": self.positions[:, 2],
            "value": self.values.astype(np.float64),
        }
        if self.grid_indices is not None:
            data["i"] = self.grid_indices[:, 0]
            data["j"] = self.grid_indices[:, 1]
            data["k"] = self.grid_indices[:, 2]
        for name, column in self.scores.items():
            data[name] = column
        return pd.DataFrame(data)

    def to_records(self) -> List[Dict[str, float]]:
        return [
            {"x": point.x, "y": point.y, "z": point.z, "value": point.value}
            for point in self
        ]


@dataclass
class FragMapSpec:
    """One FragMap grid type with its file and threshold settings."""
    id: str
    name: str
    path: str = ""
    format: Optional[str] = None
    color: str = "#ffffff"
    iso_value: float = -0.8
    min_iso_value: float = -2.0
    max_iso_value: float = 0.5
    direction: str = DIRECTION_FAVORABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "format": self.format,
            "color": self.color,
            "iso_value": self.iso_value,
            "min_iso_value": self.min_iso_value,
            "max_iso_value": self.max_iso_value,
            "direction": self.direction,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FragMapSpec":
        direction = data.get("direction", data.get("threshold_mode", DIRECTION_FAVORABLE))
        return cls(
            id=str(data.get("id", "fragmap")),
            name=str(data.get("name", data.get("id", "FragMap"))),
            path=str(data.get("path", data.get("file_name", "")) or ""),
            format=data.get("format"),
            color=str(data.get("color", "#ffffff")),
            iso_value=float(data.get("iso_value", -0.8)),
            min_iso_value=float(data.get("min_iso_value", -2.0)),
            max_iso_value=float(data.get("max_iso_value", 0.5)),
            direction=normalize_direction(direction),
        )


@dataclass
class ParseOptions:
    center_convention: str = "half_open"
    dx_axis_order: str = "x_fastest"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "center_convention": self.center_convention,
            "dx_axis_order": self.dx_axis_order,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParseOptions":
        return cls(
            center_convention=str(data.get("center_convention", "half_open")),
            dx_axis_order=str(data.get("dx_axis_order", "x_fastest")),
        )


@dataclass
class SamplingOptions:
    stride: int = 1
    max_points: Optional[int] = None
    workers: Optional[int] = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stride": self.stride,
            "max_points": self.max_points,
            "workers": self.workers,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SamplingOptions":
        max_points = data.get("max_points")
        return cls(
            stride=int(data.get("stride", data.get("grid_sample_rate", 1))),
            max_points=int(max_points) if max_points is not None else None,
            workers=data.get("workers", 1),
        )


@dataclass
class ScoreWeights:
    proximity: float = 0.6
    value: float = 0.4

    def to_dict(self) -> Dict[str, Any]:
        return {"proximity": self.proximity, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreWeights":
        return cls(
            proximity=float(data.get("proximity", 0.6)),
            value=float(data.get("value", data.get("energy", 0.4))),
        )


@dataclass
class RegionOptions:
    enabled: bool = False
    mode: str = "ranked"  # "ranked" or legacy "bounding_box"
    max_distance: float = 5.0
    max_points: int = 5000
    adaptive_distance: bool = True
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    value_best: float = -2.0
    value_worst: float = 0.0
    bounds_padding: float = 5.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "mode": self.mode,
            "max_distance": self.max_distance,
            "max_points": self.max_points,
            "adaptive_distance": self.adaptive_distance,
            "weights": self.weights.to_dict(),
            "value_best": self.value_best,
            "value_worst": self.value_worst,
            "bounds_padding": self.bounds_padding,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegionOptions":
        return cls(
            enabled=bool(data.get("enabled", False)),
            mode=str(data.get("mode", "ranked")),
            max_distance=float(data.get("max_distance", 5.0)),
            max_points=int(data.get("max_points", data.get("max_spheres", 5000))),
            adaptive_distance=bool(data.get("adaptive_distance", True)),
            weights=ScoreWeights.from_dict(data.get("weights", {}) or {}),
            value_best=float(data.get("value_best", -2.0)),
            value_worst=float(data.get("value_worst", 0.0)),
            bounds_padding=float(data.get("bounds_padding", 5.0)),
        )


@dataclass
class AnchorConfig:
    structure: Optional[str] = None
    selection: str = "protein"
    points: List[Dict[str, Any]] = field(default_factory=list)
    near: Optional[List[float]] = None
    radius: float = 8.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "structure": self.structure,
            "selection": self.selection,
            "points": [dict(point) for point in self.points],
            "near": list(self.near) if self.near is not None else None,
            "radius": self.radius,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnchorConfig":
        near = data.get("near")
        return cls(
            structure=data.get("structure"),
            selection=str(data.get("selection", "protein")),
            points=[dict(point) for point in data.get("points", []) or []],
            near=[float(v) for v in near] if near is not None else None,
            radius=float(data.get("radius", 8.0)),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.structure or self.points)


@dataclass
class OutputConfig:
    output_dir: str = "results"
    write_points: bool = True
    write_dx: bool = False
    report: bool = False
    report_format: str = "md"
    cache_dir: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output_dir": self.output_dir,
            "write_points": self.write_points,
            "write_dx": self.write_dx,
            "report": self.report,
            "report_format": self.report_format,
            "cache_dir": self.cache_dir,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OutputConfig":
        return cls(
            output_dir=data.get("output_dir", "results"),
            write_points=bool(data.get("write_points", True)),
            write_dx=bool(data.get("write_dx", False)),
            report=bool(data.get("report", False)),
            report_format=data.get("report_format", "md"),
            cache_dir=data.get("cache_dir"),
        )


@dataclass
class PipelineConfig:
    fragmaps: List[FragMapSpec]
    parse: ParseOptions = field(default_factory=ParseOptions)
    sampling: SamplingOptions = field(default_factory=SamplingOptions)
    region: RegionOptions = field(default_factory=RegionOptions)
    anchors: AnchorConfig = field(default_factory=AnchorConfig)
    outputs: OutputConfig = field(default_factory=OutputConfig)
    version: str = "1.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "fragmaps": [spec.to_dict() for spec in self.fragmaps],
            "parse": self.parse.to_dict(),
            "sampling": self.sampling.to_dict(),
            "region": self.region.to_dict(),
            "anchors": self.anchors.to_dict(),
            "outputs": self.outputs.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        fragmaps_raw = data.get("fragmaps")
        if fragmaps_raw is None:
            fragmaps = default_fragmap_types()
        else:
            fragmaps = [FragMapSpec.from_dict(item) for item in fragmaps_raw]
        return cls(
            fragmaps=fragmaps,
            parse=ParseOptions.from_dict(data.get("parse", {}) or {}),
            sampling=SamplingOptions.from_dict(data.get("sampling", {}) or {}),
            region=RegionOptions.from_dict(data.get("region", {}) or {}),
            anchors=AnchorConfig.from_dict(data.get("anchors", {}) or {}),
            outputs=OutputConfig.from_dict(data.get("outputs", {}) or {}),
            version=str(data.get("version", "1.0")),
        )

    def fragmap(self, fragmap_id: str) -> FragMapSpec:
        for spec in self.fragmaps:
            if spec.id == fragmap_id:
                return spec
        raise KeyError(f"FragMap '{fragmap_id}' not configured")


def default_fragmap_types(map_dir: str = "") -> List[FragMapSpec]:
    """Standard SILCS GFE FragMap types; returns a fresh list on every call."""
    def _path(file_name: str) -> str:
        return f"{map_dir.rstrip('/')}/{file_name}" if map_dir else file_name

    return [
        FragMapSpec("hydrophobic", "Hydrophobic", _path("3fly.apolar.gfe.dx"), color="#ffeb3b"),
        FragMapSpec("hbond-donor", "H-Bond Donor", _path("3fly.hbdon.gfe.dx"), color="#2196f3"),
        FragMapSpec("hbond-acceptor", "H-Bond Acceptor", _path("3fly.hbacc.gfe.dx"), color="#f44336"),
        FragMapSpec("positive", "Positive Ion", _path("3fly.mamn.gfe.dx"), color="#4caf50"),
        FragMapSpec("negative", "Negative Ion", _path("3fly.meoo.gfe.dx"), color="#9c27b0"),
        FragMapSpec("aromatic", "Aromatic", _path("3fly.acec.gfe.dx"), color="#ff9800"),
        FragMapSpec(
            "exclusion",
            "Exclusion",
            _path("3fly.excl.dx"),
            color="#9e9e9e",
            iso_value=0.5,
            min_iso_value=0.0,
            max_iso_value=2.0,
            direction=DIRECTION_EXCLUSION,
        ),
    ]


def default_pipeline(map_dir: str = "", output_dir: str = "results") -> PipelineConfig:
    return PipelineConfig(
        fragmaps=default_fragmap_types(map_dir),
        outputs=OutputConfig(output_dir=output_dir),
    )
