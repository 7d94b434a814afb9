"""
Gridded state buffers for the global Br/BrO fields.

:class:`BromineState` owns the tropospheric, stratospheric and merged Br and
BrO arrays plus the J-BrO photolysis array. It is created by the caller at
simulation start, passed to every :func:`globalbr.merge.retrieve` call and
released at teardown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from globalbr.config import GridConfig
from globalbr.errors import AllocationFailure

logger = logging.getLogger(__name__)


# Buffers spanning the full column; J-BrO spans llchem levels only
COLUMN_BUFFERS = (
    "br_trop",
    "br_strat",
    "br_merge",
    "bro_trop",
    "bro_strat",
    "bro_merge",
)


@dataclass
class BromineState:
    """
    Owned Br/BrO buffers and their lifecycle.

    Attributes
    ----------
    grid : GridConfig
        Grid dimensions and precision.
    br_trop, bro_trop : np.ndarray or None
        Tropospheric estimates [pptv].
    br_strat, bro_strat : np.ndarray or None
        Stratospheric (GMI) estimates [pptv].
    br_merge, bro_merge : np.ndarray or None
        Merged fields [pptv].
    j_bro : np.ndarray or None
        BrO photolysis rate on the chemically active levels.
    initialized : bool
        True once the buffers have been allocated by a retrieval.
    """

    grid: GridConfig
    br_trop: np.ndarray | None = None
    br_strat: np.ndarray | None = None
    br_merge: np.ndarray | None = None
    bro_trop: np.ndarray | None = None
    bro_strat: np.ndarray | None = None
    bro_merge: np.ndarray | None = None
    j_bro: np.ndarray | None = None
    initialized: bool = False
    month: int | None = None
    sources: dict[str, str] = field(default_factory=dict)

    @property
    def allocated(self) -> bool:
        """True if every buffer is allocated."""
        return all(getattr(self, name) is not None for name in self.buffer_names)

    @property
    def buffer_names(self) -> tuple[str, ...]:
        """Names of all owned buffers."""
        return COLUMN_BUFFERS + ("j_bro",)

    def buffer_shape(self, name: str) -> tuple[int, int, int]:
        """Shape of buffer ``name``."""
        if name == "j_bro":
            return (self.grid.nx, self.grid.ny, self.grid.llchem)
        return self.grid.shape

    def initialize(self) -> None:
        """
        Allocate and zero all buffers.

        Calling this on an allocated state re-zeroes every buffer.

        Raises
        ------
        AllocationFailure
            If a buffer cannot be allocated. Buffers allocated before the
            failure are released.
        """
        dtype = self.grid.dtype
        for name in self.buffer_names:
            shape = self.buffer_shape(name)
            try:
                setattr(self, name, np.zeros(shape, dtype=dtype))
            except (MemoryError, ValueError) as e:
                self.release()
                raise AllocationFailure(name, shape) from e

        logger.debug(
            f"Allocated Br/BrO buffers {self.grid.shape} and J-BrO "
            f"{self.buffer_shape('j_bro')} as {dtype}"
        )

    def release(self) -> None:
        """Deallocate all buffers. Safe to call when nothing is allocated."""
        if self.allocated or self.initialized:
            logger.debug("Releasing Br/BrO buffers")
        for name in self.buffer_names:
            setattr(self, name, None)
        self.initialized = False
        self.month = None
        self.sources.clear()
