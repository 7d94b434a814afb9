#!/usr/bin/env python3
"""
Synthetic Global Br Demo for globalbr.

Builds idealised GEOS-Chem, pTOMCAT and GMI bromine fields on a coarse
grid, merges them at a latitude-dependent tropopause for two months and
prints the per-level summary.

Usage:
    python examples/synthetic_month.py
"""

import logging
import sys

import numpy as np

from globalbr import BromineState, FieldStore, GridConfig, retrieve

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_store(grid: GridConfig, month: int) -> FieldStore:
    """Idealised monthly fields: tropospheric Br decays with height, GMI Br grows."""
    nx, ny, nz = grid.shape
    z = np.linspace(0.0, 1.0, nz)[np.newaxis, np.newaxis, :]
    lat = np.linspace(-1.0, 1.0, ny)[np.newaxis, :, np.newaxis]
    season = 1.0 + 0.2 * np.cos(2.0 * np.pi * (month - 1) / 12.0)

    br_gc = np.broadcast_to(0.5e-3 * season * np.exp(-3.0 * z) * (1.0 + 0.5 * lat**2), grid.shape)
    br_tomcat = br_gc * 1.0e3 * 0.8
    br_gmi = np.broadcast_to(5.0 * z**2 * np.ones((nx, 1, 1)), grid.shape)
    jbro = np.broadcast_to(0.03 * (1.0 - 0.5 * np.abs(lat)) * np.ones((nx, 1, nz)), grid.shape)

    return FieldStore({
        "Br_GC": br_gc,
        "BrO_GC": 0.3 * br_gc,
        "Br_TOMCAT": br_tomcat,
        "BrO_TOMCAT": 0.3 * br_tomcat,
        "Br_GMI": br_gmi,
        "BrO_GMI": 0.4 * br_gmi,
        "JBrO": jbro,
    }, month=month)


def tropopause(grid: GridConfig) -> np.ndarray:
    """Higher tropopause in the tropics than at the poles."""
    lat = np.linspace(-1.0, 1.0, grid.ny)
    levels = np.rint(0.75 * grid.nz - 0.35 * grid.nz * np.abs(lat)).astype(int)
    return np.broadcast_to(np.clip(levels, 1, grid.nz), grid.horizontal_shape).copy()


def main():
    grid = GridConfig(nx=12, ny=9, nz=20, llchem=15, llchem_fix=15)
    state = BromineState(grid)
    tpl = tropopause(grid)

    try:
        for month, use_gc in ((1, True), (7, False)):
            fields = retrieve(state, build_store(grid, month), month, tpl, use_gc_bromine=use_gc)
            logger.info(f"Month {month:02d} ({fields.source_name}):")
            summary = fields.get_summary()
            logger.info("\n" + summary.to_string(index=False, float_format=lambda v: f"{v:.3g}"))
    except Exception as e:
        logger.error(f"Demo failed: {e}")
        return 1
    finally:
        state.release()

    return 0


if __name__ == "__main__":
    sys.exit(main())
