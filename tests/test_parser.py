import numpy as np
import pytest

from fragmap.errors import GridParseError
from fragmap.models import ParseOptions
from fragmap.parser import (
    detect_format,
    parse_grid_text,
    parse_native,
    parse_opendx,
    read_grid_file,
)


def test_native_header_and_data(scenario_map_text):
    grid, warnings = parse_native(scenario_map_text, source="scenario.map")
    assert grid.dimensions == (2, 2, 1)
    assert grid.spacing == (1.0, 1.0, 1.0)
    assert grid.center == (0.0, 0.0, 0.0)
    assert grid.origin == pytest.approx((-1.0, -1.0, -0.5))
    assert grid.values.dtype == np.float32
    assert grid.values.tolist() == [1.0, -1.0, -1.0, 1.0]
    assert grid.metadata == {"GRID_PARAMETER_FILE": "fragmap.gpf"}
    assert grid.source == "scenario.map"
    assert warnings == []


def test_native_centered_convention(scenario_map_text):
    grid, _ = parse_native(scenario_map_text, options=ParseOptions(center_convention="centered"))
    assert grid.origin == pytest.approx((-0.5, -0.5, 0.0))


def test_native_several_values_per_line_and_comments():
    text = "SPACING 0.5\nNELEMENTS 3 1 1\nCENTER 1 1 1\n# comment\n-0.25 0.5\n\n+1.5\n"
    grid, warnings = parse_native(text)
    assert grid.values.tolist() == [-0.25, 0.5, 1.5]
    assert warnings == []


def test_native_data_may_start_with_dot():
    text = "SPACING 1\nNELEMENTS 1 1 2\nCENTER 0 0 0\n.5\n.25\n"
    grid, _ = parse_native(text)
    assert grid.values.tolist() == [0.5, 0.25]


def test_native_missing_nelements_is_fatal():
    with pytest.raises(GridParseError) as excinfo:
        parse_native("SPACING 1.0\nCENTER 0 0 0\n1.0\n", source="broken.map")
    assert "NELEMENTS" in str(excinfo.value)
    assert str(excinfo.value).startswith("broken.map:")


def test_native_missing_spacing_is_fatal():
    with pytest.raises(GridParseError, match="SPACING"):
        parse_native("NELEMENTS 1 1 1\nCENTER 0 0 0\n1.0\n")


def test_native_nelements_needs_three_integers():
    with pytest.raises(GridParseError):
        parse_native("SPACING 1\nNELEMENTS 2 2\nCENTER 0 0 0\n1.0\n")
    with pytest.raises(GridParseError):
        parse_native("SPACING 1\nNELEMENTS 2 2 x\nCENTER 0 0 0\n1.0\n")


def test_native_missing_center_warns():
    grid, warnings = parse_native("SPACING 1\nNELEMENTS 2 1 1\n0.1 0.2\n")
    assert grid.center == (0.0, 0.0, 0.0)
    assert grid.origin == pytest.approx((-1.0, -0.5, -0.5))
    assert [w.kind for w in warnings] == ["missing_center"]


def test_native_drops_and_counts_bad_tokens():
    text = "SPACING 1\nNELEMENTS 2 2 1\nCENTER 0 0 0\n1.0 abc\n-1.0 2.0x\n3.0\n"
    grid, warnings = parse_native(text)
    assert grid.values.tolist() == [1.0, -1.0, 3.0]
    dropped = [w for w in warnings if w.kind == "dropped_tokens"]
    assert len(dropped) == 1
    assert dropped[0].details == {"dropped": 2, "first": "abc"}


def test_native_keeps_non_finite_literals_for_validator():
    grid, warnings = parse_native("SPACING 1\nNELEMENTS 2 1 1\nCENTER 0 0 0\n1.0\nnan\n")
    assert grid.values.size == 2
    assert np.isnan(grid.values[1])
    assert warnings == []


def test_opendx_basic(small_dx_text):
    grid, warnings = parse_opendx(small_dx_text, source="small.dx")
    assert grid.dimensions == (2, 2, 2)
    assert grid.origin == (1.0, 2.0, 3.0)
    assert grid.spacing == (0.5, 0.5, 0.5)
    assert grid.center is None
    assert grid.source_format == "opendx"
    assert grid.values.tolist() == pytest.approx([-1.5, -0.5, 0.0, 0.5, 1.0, -2.0, -0.8, 0.2])
    assert warnings == []


def test_opendx_items_bounds_values():
    text = (
        "object 1 class gridpositions counts 1 1 2\n"
        "origin 0 0 0\ndelta 1 0 0\ndelta 0 1 0\ndelta 0 0 1\n"
        "object 3 class array type float rank 0 items 2 data follows\n"
        "1.0 2.0 3.0\n"
    )
    grid, _ = parse_opendx(text)
    assert grid.values.tolist() == [1.0, 2.0]


def test_opendx_rejects_off_diagonal_delta():
    text = (
        "object 1 class gridpositions counts 1 1 1\n"
        "origin 0 0 0\ndelta 1 0.1 0\ndelta 0 1 0\ndelta 0 0 1\n"
        "object 3 class array type float rank 0 items 1 data follows\n1.0\n"
    )
    with pytest.raises(GridParseError, match="axis-aligned"):
        parse_opendx(text)


def test_opendx_missing_counts_is_fatal():
    text = "origin 0 0 0\ndelta 1 0 0\ndelta 0 1 0\ndelta 0 0 1\nobject 3 class array items 1 data follows\n1\n"
    with pytest.raises(GridParseError, match="counts"):
        parse_opendx(text)


def test_opendx_missing_origin_and_connection_mismatch_warn():
    text = (
        "object 1 class gridpositions counts 2 1 1\n"
        "delta 1 0 0\ndelta 0 1 0\ndelta 0 0 1\n"
        "object 2 class gridconnections counts 3 1 1\n"
        "object 3 class array type float rank 0 items 2 data follows\n1 2\n"
    )
    grid, warnings = parse_opendx(text)
    assert grid.origin == (0.0, 0.0, 0.0)
    assert {w.kind for w in warnings} == {"missing_origin", "grid_connections_mismatch"}


def test_opendx_z_fastest_reorders_to_x_fastest():
    # values written with z fastest: v(i,j,k) = 100*i + 10*j + k
    nx, ny, nz = 2, 3, 2
    z_fastest = [100 * i + 10 * j + k for i in range(nx) for j in range(ny) for k in range(nz)]
    text = (
        f"object 1 class gridpositions counts {nx} {ny} {nz}\n"
        "origin 0 0 0\ndelta 1 0 0\ndelta 0 1 0\ndelta 0 0 1\n"
        f"object 3 class array type float rank 0 items {len(z_fastest)} data follows\n"
        + " ".join(str(v) for v in z_fastest)
        + "\n"
    )
    grid, _ = parse_opendx(text, options=ParseOptions(dx_axis_order="z_fastest"))
    expected = [100 * i + 10 * j + k for k in range(nz) for j in range(ny) for i in range(nx)]
    assert grid.values.tolist() == expected


def test_detect_format_and_dispatch(small_dx_text, scenario_map_text):
    assert detect_format("a/b/grid.MAP") == "native"
    assert detect_format("grid.dx") == "opendx"
    with pytest.raises(GridParseError):
        detect_format("grid.ccp4")
    grid, _ = parse_grid_text(small_dx_text, "dx")
    assert grid.source_format == "opendx"
    grid, _ = parse_grid_text(scenario_map_text, "map")
    assert grid.source_format == "native"


def test_read_grid_file_sets_source(write_grid, scenario_map_text):
    path = write_grid("apolar.map", scenario_map_text)
    grid, _ = read_grid_file(path)
    assert grid.source == "apolar.map"
    assert grid.dimensions == (2, 2, 1)
