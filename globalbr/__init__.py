"""
globalbr: Monthly Global Bromine Oxidant Fields
===============================================

Builds best-estimate 3-D Br and BrO concentration fields [pptv] and the
BrO photolysis rate for one simulation month, for use as oxidants in
mercury chemistry.

Tropospheric Br/BrO come from either the GEOS-Chem bromine simulation
(ppbv, converted to pptv) or the pTOMCAT biogenic bromocarbon simulation
(pptv). Stratospheric Br/BrO come from GMI. Below the local tropopause the
tropospheric source is used exclusively; at and above it the source with
more Br wins.

Modules
-------
config : Configuration loading and validation
errors : Exception hierarchy
io : Field store and netCDF/NPZ I/O
state : Owned Br/BrO buffers and their lifecycle
merge : Tropopause-based merge of the upstream fields
visualization : Zonal-mean plots
cli : Command-line interface
"""

__version__ = "0.1.0"

from globalbr.config import (
    GlobalBrConfig,
    GridConfig,
    SourceConfig,
    load_config,
)
from globalbr.errors import (
    AllocationFailure,
    DataUnavailable,
    GlobalBrError,
    GridMismatch,
    TropopauseLevelError,
)
from globalbr.io import FieldStore, load_field_store, load_fields, save_fields
from globalbr.merge import BromineFields, retrieve
from globalbr.state import BromineState

__all__ = [
    "__version__",
    # Config
    "GlobalBrConfig",
    "GridConfig",
    "SourceConfig",
    "load_config",
    # Errors
    "GlobalBrError",
    "AllocationFailure",
    "DataUnavailable",
    "GridMismatch",
    "TropopauseLevelError",
    # Core
    "FieldStore",
    "load_field_store",
    "load_fields",
    "save_fields",
    "BromineState",
    "BromineFields",
    "retrieve",
]
