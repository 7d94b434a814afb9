"""
Exceptions raised by globalbr.

All errors derive from :class:`GlobalBrError` and also from the builtin
exception a caller would naturally catch for that kind of failure.
"""

from __future__ import annotations


class GlobalBrError(Exception):
    """Base exception for bromine field errors."""


class AllocationFailure(GlobalBrError, MemoryError):
    """A state buffer could not be allocated."""

    def __init__(self, buffer_name: str, shape: tuple[int, ...]):
        self.buffer_name = buffer_name
        self.shape = shape
        super().__init__(f"Allocation error: {buffer_name} with shape {shape}")


class DataUnavailable(GlobalBrError, LookupError):
    """A named upstream field is not present in the field store."""

    def __init__(self, field_name: str, routine: str | None = None):
        self.field_name = field_name
        self.routine = routine
        message = f"Cannot get field {field_name!r}"
        if routine:
            message += f" (requested by {routine})"
        super().__init__(message)


class GridMismatch(GlobalBrError, ValueError):
    """A field does not match the configured grid."""


class TropopauseLevelError(GlobalBrError, ValueError):
    """The tropopause level field is mis-shaped or out of range."""


__all__ = [
    "GlobalBrError",
    "AllocationFailure",
    "DataUnavailable",
    "GridMismatch",
    "TropopauseLevelError",
]
