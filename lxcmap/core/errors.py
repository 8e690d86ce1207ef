"""Error taxonomy for lxcmap runs.

Terminal errors (MapValidationError, InventoryError, LockError) abort a run
before any host is mutated. Everything else is contained to one host or one
container and ends up in the final report.
"""
from typing import Optional


class LxcmapError(Exception):
    """Base class for all lxcmap errors."""


class MapValidationError(LxcmapError):
    """The container map document is malformed or inconsistent."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class InventoryError(LxcmapError):
    """The host inventory is missing or malformed."""


class ProbeError(LxcmapError):
    """A read-only host query failed."""

    def __init__(self, host: str, message: str):
        self.host = host
        super().__init__(f"{host}: {message}")


class PolicyError(LxcmapError):
    """A container's isolation policy cannot be honoured on its host."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class TransientActionError(LxcmapError):
    """A host operation failed in a way that may succeed on retry."""


class ActionFailure(LxcmapError):
    """A host operation failed permanently."""
