import os
import sys

import pytest

# Add src to path for all tests
src_path = os.path.abspath(os.path.join(os.path.dirname(__file__), "../src"))
if src_path not in sys.path:
    sys.path.insert(0, src_path)


SCENARIO_MAP = """# GFE map written by the SILCS tools
GRID_PARAMETER_FILE fragmap.gpf
SPACING 1.0
NELEMENTS 2 2 1
CENTER 0 0 0
1.0
-1.0
-1.0
1.0
"""

SMALL_DX = """# small test grid
object 1 class gridpositions counts 2 2 2
origin 1.0 2.0 3.0
delta 0.5 0 0
delta 0 0.5 0
delta 0 0 0.5
object 2 class gridconnections counts 2 2 2
object 3 class array type float rank 0 items 8 data follows
-1.5 -0.5 0.0 0.5 1.0 -2.0
-0.8 0.2
attribute "dep" string "positions"
object "small" class field
component "positions" value 1
component "connections" value 2
component "data" value 3
"""


@pytest.fixture
def scenario_map_text():
    """2x2x1 native grid with two favorable (-1.0) cells."""
    return SCENARIO_MAP


@pytest.fixture
def small_dx_text():
    return SMALL_DX


@pytest.fixture
def write_grid(tmp_path):
    def _write(name: str, text: str) -> str:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)

    return _write
