"""
Field store and file I/O utilities for globalbr.

The :class:`FieldStore` holds the monthly upstream snapshots (GEOS-Chem,
GMI, pTOMCAT Br/BrO and J-BrO) as read-only float32 arrays in model order
``(lon, lat, lev)``. Helpers here fill a store from netCDF or NPZ files and
save merged output.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Mapping

import netCDF4
import numpy as np

from globalbr.config import FIELD_KEYS, FieldFileConfig, GlobalBrConfig
from globalbr.errors import DataUnavailable, GridMismatch, TropopauseLevelError

if TYPE_CHECKING:
    from globalbr.merge import BromineFields

logger = logging.getLogger(__name__)


# =============================================================================
# Field Store
# =============================================================================


class FieldStore:
    """
    Named, read-only gridded fields for the current month.

    Parameters
    ----------
    fields : mapping, optional
        Initial ``name -> array`` entries.
    month : int, optional
        Month the snapshot belongs to (1-12).
    """

    def __init__(
        self,
        fields: Mapping[str, np.ndarray] | None = None,
        month: int | None = None,
    ):
        self.month = month
        self._fields: dict[str, np.ndarray] = {}
        for name, data in (fields or {}).items():
            self.add_field(name, data)

    def add_field(self, name: str, data: np.ndarray) -> None:
        """Register a copy of ``data`` as float32 under ``name``."""
        arr = np.array(data, dtype=np.float32)
        arr.flags.writeable = False
        self._fields[name] = arr
        logger.debug(f"Registered field {name} with shape {arr.shape}")

    def get_field(self, name: str, routine: str | None = None) -> np.ndarray:
        """
        Return a read-only view of a field.

        Parameters
        ----------
        name : str
            Field name.
        routine : str, optional
            Name of the caller, reported if the field is missing.

        Raises
        ------
        DataUnavailable
            If no field is registered under ``name``.
        """
        try:
            arr = self._fields[name]
        except KeyError:
            raise DataUnavailable(name, routine) from None
        view = arr.view()
        view.flags.writeable = False
        return view

    @property
    def names(self) -> list[str]:
        """Sorted names of the registered fields."""
        return sorted(self._fields)

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __len__(self) -> int:
        return len(self._fields)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __repr__(self) -> str:
        return f"FieldStore(month={self.month}, fields={self.names})"


# =============================================================================
# File Readers
# =============================================================================


def _select_month(values: np.ndarray, month: int | None, ndim: int, name: str) -> np.ndarray:
    """Drop a leading time axis, picking the requested month."""
    if values.ndim == ndim:
        return values
    if values.ndim != ndim + 1:
        raise GridMismatch(
            f"Variable {name} has {values.ndim} dimensions, expected {ndim} or {ndim + 1}"
        )
    n_times = values.shape[0]
    if n_times == 1:
        return values[0]
    if n_times == 12:
        if month is None:
            raise ValueError(f"Variable {name} has 12 monthly records; a month is required")
        return values[month - 1]
    raise GridMismatch(
        f"Variable {name} has {n_times} time records, expected 1 or 12"
    )


def read_variable(
    path: str | Path,
    variable: str,
    month: int | None = None,
    ndim: int = 3,
) -> np.ndarray:
    """
    Read one gridded variable in model order.

    netCDF variables are stored ``([time,] lev, lat, lon)`` and are
    transposed to ``(lon, lat, lev)``; NPZ arrays are already in model
    order. Masked values are filled with zero.

    Parameters
    ----------
    path : str or Path
        netCDF or NPZ file.
    variable : str
        Variable name inside the file.
    month : int, optional
        Month (1-12) used when the variable has 12 time records.
    ndim : int
        Spatial dimensionality, 3 for fields and 2 for the tropopause level.

    Returns
    -------
    np.ndarray
        Array with ``ndim`` dimensions.

    Raises
    ------
    DataUnavailable
        If the variable is not in the file.
    """
    path = Path(path)
    logger.debug(f"Reading {variable} from {path}")

    if path.suffix == ".npz":
        with np.load(path) as data:
            if variable not in data.files:
                raise DataUnavailable(variable, f"read_variable ({path.name})")
            values = data[variable]
        return _select_month(values, month, ndim, variable)

    with netCDF4.Dataset(path, "r") as fp:
        if variable not in fp.variables:
            raise DataUnavailable(variable, f"read_variable ({path.name})")
        raw = fp.variables[variable][:]
        units = getattr(fp.variables[variable], "units", None)

    values = np.ma.filled(np.ma.asarray(raw, dtype=np.float64), 0.0)
    if units:
        logger.debug(f"  {variable} units: {units}")

    values = _select_month(values, month, ndim, variable)
    # COARDS (lev, lat, lon) -> model (lon, lat, lev)
    return values.T


def load_field_store(
    config: GlobalBrConfig,
    month: int,
    keys: list[str] | None = None,
) -> FieldStore:
    """
    Fill a field store from the files listed in ``config.inputs``.

    Parameters
    ----------
    config : GlobalBrConfig
        Configuration object.
    month : int
        Simulation month (1-12).
    keys : list[str], optional
        Logical field keys to load; defaults to every configured input.

    Returns
    -------
    FieldStore
        Store with each field registered under its configured store name.
    """
    if keys is None:
        keys = [k for k in FIELD_KEYS if k in config.inputs.fields]

    store = FieldStore(month=month)
    names = config.source.fields

    for key in keys:
        entry = config.inputs.fields.get(key)
        if entry is None:
            logger.warning(f"No input file configured for {key}")
            continue
        store_name = getattr(names, key)
        values = read_variable(entry.path, entry.variable or store_name, month=month)
        store.add_field(store_name, values)

    logger.info(f"Loaded {len(store)} fields for month {month}: {store.names}")
    return store


def read_tropopause_level(
    entry: FieldFileConfig,
    month: int | None = None,
) -> np.ndarray:
    """
    Read the per-column tropopause level as an integer array.

    Parameters
    ----------
    entry : FieldFileConfig
        File and variable (default ``TropLev``).
    month : int, optional
        Month used when the file holds 12 records.

    Returns
    -------
    np.ndarray
        Integer array of shape ``(nx, ny)``.

    Raises
    ------
    TropopauseLevelError
        If any level is non-finite or not a whole number.
    """
    values = read_variable(entry.path, entry.variable or "TropLev", month=month, ndim=2)
    if not np.all(np.isfinite(values)):
        raise TropopauseLevelError(f"Tropopause level in {entry.path} has non-finite values")
    levels = np.rint(values)
    if np.any(values != levels):
        raise TropopauseLevelError(f"Tropopause level in {entry.path} has non-integral values")
    return levels.astype(np.int64)


# =============================================================================
# Merged Field Output
# =============================================================================

OUTPUT_ARRAYS = ("br", "bro", "j_bro", "tropopause_level")


def save_fields(path: str | Path, fields: BromineFields) -> Path:
    """
    Write merged fields to a compressed NPZ archive in model order.

    The month and tropospheric source are stored alongside the arrays so
    the archive can be read back without the configuration.

    Parameters
    ----------
    path : str or Path
        Output file path. Parent directories are created.
    fields : BromineFields
        Result of a retrieval.

    Returns
    -------
    Path
        The written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    np.savez_compressed(
        path,
        **{name: getattr(fields, name) for name in OUTPUT_ARRAYS},
        month=np.int64(fields.month),
        use_gc_bromine=np.bool_(fields.use_gc_bromine),
    )
    logger.info(f"Saved month {fields.month:02d} fields ({fields.source_name}) to {path}")
    return path


def load_fields(path: str | Path) -> BromineFields:
    """
    Read merged fields written by :func:`save_fields`.

    Raises
    ------
    DataUnavailable
        If the archive lacks one of the merged arrays.
    """
    from globalbr.merge import BromineFields

    path = Path(path)
    with np.load(path) as data:
        expected = OUTPUT_ARRAYS + ("month", "use_gc_bromine")
        missing = [name for name in expected if name not in data.files]
        if missing:
            raise DataUnavailable(missing[0], f"load_fields ({path.name})")
        arrays = {name: data[name] for name in OUTPUT_ARRAYS}
        month = int(data["month"])
        use_gc_bromine = bool(data["use_gc_bromine"])

    for arr in arrays.values():
        arr.flags.writeable = False

    logger.debug(f"Loaded month {month:02d} fields from {path}")
    return BromineFields(**arrays, month=month, use_gc_bromine=use_gc_bromine)
