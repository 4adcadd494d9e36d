import sys
from pathlib import Path

import pytest


# Ensure `backend/` is on sys.path so tests can import local modules
# like `gpkg.*`, `geo.*`, `engine.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))

from gpkg.connection import create_geopackage  # noqa: E402


@pytest.fixture
def gpkg_path(tmp_path):
    return tmp_path / "sample.gpkg"


@pytest.fixture
def gpkg(gpkg_path):
    with create_geopackage(gpkg_path) as g:
        yield g
