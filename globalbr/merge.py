"""
Monthly global Br/BrO retrieval.

Combines tropospheric Br and BrO from either GEOS-Chem or the pTOMCAT
biogenic bromocarbon simulation with stratospheric Br and BrO from GMI.
The tropospheric source is used exclusively below the local tropopause.
At and above it, whichever source has more Br is used for both Br and BrO.
GMI source gases include CH3Br and halons, while pTOMCAT and GEOS-Chem
include CH3Br and shorter-lived gases.

References
----------
- Holmes, C. D., et al. (2006), Global lifetime of elemental mercury
  against oxidation by atomic bromine in the free troposphere, GRL 33(20).
- Holmes, C. D., et al. (2010), Global atmospheric model for mercury
  including oxidation by bromine atoms, ACP 10, 12037-12057.
- Parrella, J., et al. (2012), Tropospheric bromine chemistry:
  implications for present and pre-industrial ozone and mercury, ACP.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from globalbr.config import FieldNamesConfig, GridConfig
from globalbr.errors import GridMismatch, TropopauseLevelError
from globalbr.io import FieldStore
from globalbr.state import BromineState

logger = logging.getLogger(__name__)

# ppbv -> pptv
PPBV_TO_PPTV = 1.0e3

ROUTINE = "retrieve (globalbr.merge)"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class BromineFields:
    """
    Read-only views of the merged fields returned by a retrieval.

    ``br``, ``bro`` and ``j_bro`` share memory with the
    :class:`BromineState` buffers. They are valid until the next
    :func:`retrieve` or :meth:`BromineState.release` on that state: a later
    retrieval overwrites them in place while ``month`` and
    ``use_gc_bromine`` keep describing the retrieval that built this
    object. Copy the arrays to keep a month beyond that.
    """

    br: np.ndarray
    bro: np.ndarray
    j_bro: np.ndarray
    tropopause_level: np.ndarray
    month: int
    use_gc_bromine: bool

    @property
    def source_name(self) -> str:
        """Name of the tropospheric source."""
        return "GEOS-Chem" if self.use_gc_bromine else "pTOMCAT"

    def get_summary(self) -> pd.DataFrame:
        """
        Per-level statistics of the merged fields.

        Returns
        -------
        DataFrame
            One row per level with mean/max Br and BrO [pptv] and the
            fraction of columns in the stratosphere at that level.
        """
        nz = self.br.shape[2]
        levels = np.arange(1, nz + 1)
        in_strat = levels[np.newaxis, np.newaxis, :] >= self.tropopause_level[:, :, np.newaxis]
        return pd.DataFrame({
            "level": levels,
            "br_mean": self.br.mean(axis=(0, 1)),
            "br_max": self.br.max(axis=(0, 1)),
            "bro_mean": self.bro.mean(axis=(0, 1)),
            "bro_max": self.bro.max(axis=(0, 1)),
            "strat_fraction": in_strat.mean(axis=(0, 1)),
        })


# =============================================================================
# Merge Helpers
# =============================================================================


def _read_only(arr: np.ndarray) -> np.ndarray:
    view = arr.view()
    view.flags.writeable = False
    return view


def check_tropopause_level(tropopause_level: np.ndarray, grid: GridConfig) -> np.ndarray:
    """
    Validate the per-column tropopause level.

    Parameters
    ----------
    tropopause_level : array-like
        1-based index of the first stratospheric level, shape (nx, ny).
    grid : GridConfig
        Model grid.

    Returns
    -------
    np.ndarray
        Integer copy of the tropopause level.

    Raises
    ------
    TropopauseLevelError
        If the shape is wrong or any level lies outside [1, nz].
    """
    tpl = np.asarray(tropopause_level)
    if tpl.shape != grid.horizontal_shape:
        raise TropopauseLevelError(
            f"Tropopause level has shape {tpl.shape}, expected {grid.horizontal_shape}"
        )
    if not np.issubdtype(tpl.dtype, np.integer):
        if not np.all(np.isfinite(tpl)) or np.any(tpl != np.rint(tpl)):
            raise TropopauseLevelError("Tropopause level must contain integer level indices")
    tpl = tpl.astype(np.int64)
    if tpl.min() < 1 or tpl.max() > grid.nz:
        raise TropopauseLevelError(
            f"Tropopause level range [{tpl.min()}, {tpl.max()}] outside [1, {grid.nz}]"
        )
    return tpl


def stratospheric_mask(
    br_trop: np.ndarray,
    br_strat: np.ndarray,
    tropopause_level: np.ndarray,
) -> np.ndarray:
    """
    Cells where the stratospheric estimate replaces the tropospheric one.

    A cell is selected when it lies at or above its column's tropopause
    level and the stratospheric Br exceeds the tropospheric Br there.

    Parameters
    ----------
    br_trop, br_strat : np.ndarray
        Br estimates with shape (nx, ny, nz).
    tropopause_level : np.ndarray
        1-based first stratospheric level, shape (nx, ny).

    Returns
    -------
    np.ndarray
        Boolean mask with shape (nx, ny, nz).
    """
    nz = br_trop.shape[2]
    levels = np.arange(1, nz + 1)
    above = levels[np.newaxis, np.newaxis, :] >= tropopause_level[:, :, np.newaxis]
    return above & (br_strat > br_trop)


def merge_fields(
    trop: np.ndarray,
    strat: np.ndarray,
    mask: np.ndarray,
    out: np.ndarray | None = None,
) -> np.ndarray:
    """Copy ``trop`` into ``out``, then ``strat`` wherever ``mask`` is set."""
    if out is None:
        out = np.empty_like(trop)
    np.copyto(out, trop)
    np.copyto(out, strat, where=mask)
    return out


def _fetch(
    store: FieldStore,
    name: str,
    shape: tuple[int, ...],
) -> np.ndarray:
    """Get a field and check its shape against the grid."""
    arr = store.get_field(name, routine=ROUTINE)
    if arr.shape != shape:
        raise GridMismatch(f"Field {name} has shape {arr.shape}, expected {shape}")
    return arr


def _fetch_jbro(store: FieldStore, name: str, grid: GridConfig) -> np.ndarray:
    arr = store.get_field(name, routine=ROUTINE)
    if arr.ndim != 3 or arr.shape[:2] != grid.horizontal_shape or arr.shape[2] < grid.llchem_fix:
        raise GridMismatch(
            f"Field {name} has shape {arr.shape}, expected "
            f"{grid.horizontal_shape} with at least {grid.llchem_fix} levels"
        )
    return arr


# =============================================================================
# Retrieval
# =============================================================================


def retrieve(
    state: BromineState,
    store: FieldStore,
    month: int,
    tropopause_level: np.ndarray,
    use_gc_bromine: bool = True,
    field_names: FieldNamesConfig | None = None,
) -> BromineFields:
    """
    Build the merged Br, BrO and J-BrO fields for one month.

    Allocates the state buffers on the first call (or the first call after
    :meth:`BromineState.release`), then overwrites them in place.

    Parameters
    ----------
    state : BromineState
        Owned buffers; mutated in place.
    store : FieldStore
        Upstream fields, already positioned at ``month``. A store tagged
        with a different month is used as-is after a warning.
    month : int
        Simulation month (1-12).
    tropopause_level : np.ndarray
        1-based first stratospheric level per column, shape (nx, ny).
    use_gc_bromine : bool
        True to take tropospheric Br/BrO from GEOS-Chem [ppbv], False to
        take them from pTOMCAT [pptv].
    field_names : FieldNamesConfig, optional
        Store names of the upstream fields.

    Returns
    -------
    BromineFields
        Read-only views of the merged Br and BrO [pptv] and J-BrO.

    Raises
    ------
    DataUnavailable
        If an upstream field is not in the store. No buffer is written.
    GridMismatch
        If an upstream field does not match the grid.
    TropopauseLevelError
        If the tropopause level is invalid.
    """
    if not 1 <= month <= 12:
        raise ValueError(f"month must be in 1..12, got {month}")
    if store.month is not None and store.month != month:
        logger.warning(
            f"Field store holds month {store.month:02d}; retrieving it as month {month:02d}"
        )

    grid = state.grid
    names = field_names or FieldNamesConfig()
    tpl = check_tropopause_level(tropopause_level, grid)

    # Resolve every field before touching the buffers
    if use_gc_bromine:
        br_name, bro_name = names.br_gc, names.bro_gc
    else:
        br_name, bro_name = names.br_tomcat, names.bro_tomcat
    br_src = _fetch(store, br_name, grid.shape)
    bro_src = _fetch(store, bro_name, grid.shape)
    br_gmi = _fetch(store, names.br_gmi, grid.shape)
    bro_gmi = _fetch(store, names.bro_gmi, grid.shape)
    jbro = _fetch_jbro(store, names.jbro, grid)

    if not state.initialized:
        state.initialize()
        state.initialized = True

    dtype = grid.dtype

    if use_gc_bromine:
        state.br_trop[...] = br_src.astype(dtype) * PPBV_TO_PPTV
        state.bro_trop[...] = bro_src.astype(dtype) * PPBV_TO_PPTV
    else:
        state.br_trop[...] = br_src
        state.bro_trop[...] = bro_src

    state.br_strat[...] = br_gmi
    state.bro_strat[...] = bro_gmi

    # BrO follows the Br comparison
    mask = stratospheric_mask(state.br_trop, state.br_strat, tpl)
    merge_fields(state.br_trop, state.br_strat, mask, out=state.br_merge)
    merge_fields(state.bro_trop, state.bro_strat, mask, out=state.bro_merge)

    nfix = grid.llchem_fix
    state.j_bro[:, :, :nfix] = jbro[:, :, :nfix]

    state.month = month
    state.sources = {
        "br_trop": br_name,
        "bro_trop": bro_name,
        "br_strat": names.br_gmi,
        "bro_strat": names.bro_gmi,
        "j_bro": names.jbro,
    }

    fields = BromineFields(
        br=_read_only(state.br_merge),
        bro=_read_only(state.bro_merge),
        j_bro=_read_only(state.j_bro),
        tropopause_level=tpl,
        month=month,
        use_gc_bromine=use_gc_bromine,
    )

    n_above = int(np.sum(grid.nz - tpl + 1))
    logger.info(
        f"Retrieved global Br for month {month:02d} "
        f"(troposphere: {fields.source_name}, stratosphere: GMI)"
    )
    logger.debug(
        f"  GMI selected in {int(mask.sum())} of {n_above} cells at or above the tropopause"
    )

    return fields
