import json

import pytest

pytest.importorskip("MDAnalysis")

from fragmap.models import (
    AnchorConfig,
    FragMapSpec,
    OutputConfig,
    PipelineConfig,
    RegionOptions,
    SamplingOptions,
    default_fragmap_types,
)
from fragmap.pipeline import FragMapPipeline, load_pipeline_config, write_pipeline_config


def _config(tmp_path, specs, **kwargs):
    return PipelineConfig(
        fragmaps=specs,
        outputs=OutputConfig(output_dir=str(tmp_path / "results")),
        **kwargs,
    )


def test_pipeline_samples_each_map(tmp_path, write_grid, scenario_map_text, small_dx_text):
    specs = [
        FragMapSpec("apolar", "Hydrophobic", write_grid("apolar.map", scenario_map_text), iso_value=-0.5),
        FragMapSpec("excl", "Exclusion", write_grid("excl.dx", small_dx_text), iso_value=0.5, direction="exclusion"),
    ]
    calls = []
    result = FragMapPipeline(_config(tmp_path, specs)).run(progress=lambda c, t, m: calls.append((c, t, m)))

    assert result.failures == {}
    apolar = result.fragmap_results["apolar"]
    assert len(apolar.points) == 2
    assert apolar.filtered is None
    assert apolar.statistics.mean == 0.0
    assert apolar.direction == "favorable"
    excl = result.fragmap_results["excl"]
    assert sorted(excl.points.values.tolist()) == [0.5, 1.0]
    assert calls[-1][0] == calls[-1][1]
    assert calls[-1][2] == "Done"


def test_bad_file_recorded_and_run_continues(tmp_path, write_grid, scenario_map_text, caplog):
    specs = [
        FragMapSpec("broken", "Broken", write_grid("broken.map", "SPACING 1\nNELEMENTS 2 2 1\nCENTER 0 0 0\n1.0 nan\n")),
        FragMapSpec("ok", "OK", write_grid("ok.map", scenario_map_text), iso_value=-0.5),
    ]
    with caplog.at_level("ERROR", logger="fragmaplab"):
        result = FragMapPipeline(_config(tmp_path, specs)).run()
    assert list(result.fragmap_results) == ["ok"]
    message = result.failures["broken"]
    assert "broken.map" in message
    assert "NonFiniteValueError" in message
    assert "flat index 1" in message
    assert not result.ok
    assert "broken" in caplog.text


def test_undecodable_file_recorded_and_run_continues(tmp_path, write_grid, scenario_map_text):
    latin1_path = tmp_path / "latin1.map"
    latin1_path.write_bytes(b"# caf\xe9 grid\nSPACING 1\nNELEMENTS 2 2 1\nCENTER 0 0 0\n1.0 -1.0 -1.0 1.0\n")
    specs = [
        FragMapSpec("latin1", "Latin-1", str(latin1_path)),
        FragMapSpec("ok", "OK", write_grid("ok.map", scenario_map_text), iso_value=-0.5),
    ]
    result = FragMapPipeline(_config(tmp_path, specs)).run()
    assert list(result.fragmap_results) == ["ok"]
    message = result.failures["latin1"]
    assert "latin1.map" in message
    assert "GridParseError" in message
    assert "not valid UTF-8" in message


def test_failed_preflight_raises(tmp_path):
    specs = [FragMapSpec("missing", "Missing", str(tmp_path / "nope.map"))]
    with pytest.raises(ValueError, match="Preflight failed"):
        FragMapPipeline(_config(tmp_path, specs)).run()


def test_region_filtering_with_explicit_anchors(tmp_path, write_grid, scenario_map_text):
    specs = [FragMapSpec("apolar", "Hydrophobic", write_grid("apolar.map", scenario_map_text), iso_value=-0.5)]
    config = _config(
        tmp_path,
        specs,
        region=RegionOptions(enabled=True, max_distance=0.5, max_points=10, adaptive_distance=False),
        anchors=AnchorConfig(points=[{"x": 0.0, "y": -1.0, "z": -0.5, "label": "site"}]),
    )
    result = FragMapPipeline(config).run()
    apolar = result.fragmap_results["apolar"]
    assert len(apolar.points) == 2
    assert len(apolar.filtered) == 1
    assert apolar.filtered[0].x == pytest.approx(0.0)
    assert apolar.final_points is apolar.filtered
    assert [anchor.label for anchor in result.anchors] == ["site"]


def test_sampling_options_are_applied(tmp_path, write_grid, scenario_map_text):
    specs = [FragMapSpec("apolar", "Hydrophobic", write_grid("apolar.map", scenario_map_text), iso_value=-0.5)]
    config = _config(tmp_path, specs, sampling=SamplingOptions(max_points=1))
    result = FragMapPipeline(config).run()
    assert result.fragmap_results["apolar"].points.grid_indices.tolist() == [[1, 0, 0]]


def test_cache_reuses_parsed_grid(tmp_path, write_grid, scenario_map_text):
    path = write_grid("apolar.map", "SPACING 1\nNELEMENTS 2 2 1\n1.0 -1.0 -1.0 1.0\n")
    specs = [FragMapSpec("apolar", "Hydrophobic", path, iso_value=-0.5)]
    config = _config(tmp_path, specs)
    config.outputs.cache_dir = str(tmp_path / "cache")

    first = FragMapPipeline(config).run().fragmap_results["apolar"]
    second = FragMapPipeline(config).run().fragmap_results["apolar"]
    assert first.from_cache is False
    assert second.from_cache is True
    assert second.grid.source_format == "cache"
    assert second.grid.origin == first.grid.origin
    assert second.points.grid_indices.tolist() == first.points.grid_indices.tolist()
    assert [w.kind for w in second.warnings] == ["missing_center"]


def test_corrupt_cache_entry_is_reloaded(tmp_path, write_grid, scenario_map_text, caplog):
    path = write_grid("apolar.map", scenario_map_text)
    specs = [FragMapSpec("apolar", "Hydrophobic", path, iso_value=-0.5)]
    config = _config(tmp_path, specs)
    config.outputs.cache_dir = str(tmp_path / "cache")

    first = FragMapPipeline(config).run().fragmap_results["apolar"]
    (tmp_path / "cache" / "apolar.npz").write_bytes(b"PK\x03\x04truncated")
    with caplog.at_level("WARNING", logger="fragmaplab"):
        result = FragMapPipeline(config).run()
    second = result.fragmap_results["apolar"]
    assert result.failures == {}
    assert second.from_cache is False
    assert second.points.values.tolist() == first.points.values.tolist()
    assert "Ignoring unreadable grid cache" in caplog.text
    third = FragMapPipeline(config).run().fragmap_results["apolar"]
    assert third.from_cache is True


def test_config_round_trip_json(tmp_path):
    config = PipelineConfig(
        fragmaps=default_fragmap_types("maps"),
        region=RegionOptions(enabled=True, mode="bounding_box"),
    )
    path = str(tmp_path / "cfg" / "pipeline.json")
    write_pipeline_config(config, path)
    with open(path, "r", encoding="utf-8") as handle:
        raw = json.load(handle)
    assert raw["fragmaps"][0]["path"] == "maps/3fly.apolar.gfe.dx"
    loaded = load_pipeline_config(path)
    assert loaded.to_dict() == config.to_dict()


def test_config_round_trip_yaml(tmp_path):
    pytest.importorskip("yaml")
    config = PipelineConfig(fragmaps=[FragMapSpec("x", "X", "x.map", direction="exclusion", iso_value=0.5)])
    path = str(tmp_path / "pipeline.yaml")
    write_pipeline_config(config, path)
    assert load_pipeline_config(path).to_dict() == config.to_dict()


def test_legacy_direction_aliases_and_defaults():
    config = PipelineConfig.from_dict(
        {"fragmaps": [{"id": "a", "name": "A", "path": "a.dx", "threshold_mode": "higher"}]}
    )
    assert config.fragmaps[0].direction == "exclusion"
    defaults = PipelineConfig.from_dict({})
    assert [spec.id for spec in defaults.fragmaps][-1] == "exclusion"
    assert default_fragmap_types() is not default_fragmap_types()
