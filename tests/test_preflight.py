import pytest

pytest.importorskip("MDAnalysis")

from fragmap.models import (
    AnchorConfig,
    FragMapSpec,
    PipelineConfig,
    RegionOptions,
    SamplingOptions,
    ScoreWeights,
)
from fragmap.preflight import run_preflight


def _config(specs, **kwargs):
    return PipelineConfig(fragmaps=specs, **kwargs)


def test_valid_config_passes(write_grid, scenario_map_text):
    path = write_grid("apolar.map", scenario_map_text)
    report = run_preflight(_config([FragMapSpec("apolar", "Hydrophobic", path)]))
    assert report.ok
    assert report.errors == []
    check = report.file_checks["apolar"]
    assert check.exists and check.readable
    assert check.format == "native"
    assert check.size_bytes > 0


def test_missing_file_and_unknown_extension(tmp_path, write_grid):
    weird = write_grid("grid.ccp4", "data")
    report = run_preflight(
        _config(
            [
                FragMapSpec("missing", "Missing", str(tmp_path / "missing.dx")),
                FragMapSpec("weird", "Weird", weird),
            ]
        )
    )
    assert not report.ok
    assert any("file not found" in err for err in report.errors)
    assert any("cannot detect grid format" in err for err in report.errors)
    assert report.to_dict()["file_checks"]["weird"]["format"] is None


def test_duplicate_ids(write_grid, scenario_map_text):
    path = write_grid("a.map", scenario_map_text)
    report = run_preflight(_config([FragMapSpec("a", "A", path), FragMapSpec("a", "A2", path)]))
    assert any("used 2 times" in err for err in report.errors)


def test_threshold_warnings(write_grid, scenario_map_text):
    path = write_grid("a.map", scenario_map_text)
    report = run_preflight(
        _config(
            [
                FragMapSpec("fav", "Fav", path, iso_value=0.3),
                FragMapSpec("exc", "Exc", path, iso_value=-0.3, direction="exclusion"),
                FragMapSpec("wide", "Wide", path, iso_value=-3.0),
            ]
        )
    )
    assert report.ok
    assert any("favorable map with positive iso value" in w for w in report.warnings)
    assert any("exclusion map with negative iso value" in w for w in report.warnings)
    assert any("outside slider range" in w for w in report.warnings)


def test_bad_direction_and_sampling(write_grid, scenario_map_text):
    path = write_grid("a.map", scenario_map_text)
    report = run_preflight(
        _config(
            [FragMapSpec("a", "A", path, direction="sideways")],
            sampling=SamplingOptions(stride=0, max_points=0),
        )
    )
    assert any("Unsupported threshold direction" in err for err in report.errors)
    assert any("stride" in err for err in report.errors)
    assert any("max_points" in err for err in report.errors)


def test_region_checks(tmp_path, write_grid, scenario_map_text):
    path = write_grid("a.map", scenario_map_text)
    report = run_preflight(
        _config(
            [FragMapSpec("a", "A", path)],
            region=RegionOptions(enabled=True, max_distance=0.0, weights=ScoreWeights(0.0, 0.0)),
            anchors=AnchorConfig(structure=str(tmp_path / "missing.pdb")),
        )
    )
    assert any("max_distance" in err for err in report.errors)
    assert any("weights" in err for err in report.errors)
    assert any("Anchor structure not found" in err for err in report.errors)


def test_region_without_anchors_warns(write_grid, scenario_map_text):
    path = write_grid("a.map", scenario_map_text)
    report = run_preflight(_config([FragMapSpec("a", "A", path)], region=RegionOptions(enabled=True)))
    assert report.ok
    assert any("no anchors are configured" in w for w in report.warnings)
