"""
Shared fixtures for globalbr tests.
"""

import logging

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from globalbr.config import GridConfig
from globalbr.io import FieldStore


@pytest.fixture
def small_grid():
    """4 x 3 x 6 grid with 4 chemically active levels."""
    return GridConfig(nx=4, ny=3, nz=6, llchem=4, llchem_fix=3)


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def random_fields(small_grid, rng):
    """Random upstream fields for every source on the small grid."""
    shape = small_grid.shape
    return {
        "Br_GC": rng.uniform(0.0, 0.01, shape),
        "BrO_GC": rng.uniform(0.0, 0.01, shape),
        "Br_TOMCAT": rng.uniform(0.0, 10.0, shape),
        "BrO_TOMCAT": rng.uniform(0.0, 10.0, shape),
        "Br_GMI": rng.uniform(0.0, 10.0, shape),
        "BrO_GMI": rng.uniform(0.0, 10.0, shape),
        "JBrO": rng.uniform(0.0, 0.05, (small_grid.nx, small_grid.ny, small_grid.nz)),
    }


@pytest.fixture
def store(random_fields):
    return FieldStore(random_fields, month=7)


@pytest.fixture
def tropopause_level(small_grid, rng):
    return rng.integers(1, small_grid.nz + 1, size=small_grid.horizontal_shape)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo handlers and levels set by setup_logging during a test."""
    yield
    package_logger = logging.getLogger("globalbr")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
