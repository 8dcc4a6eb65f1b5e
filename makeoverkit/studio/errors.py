from __future__ import annotations


class StudioError(RuntimeError):
    """Base class for intents the studio engine refuses synchronously."""


class ValidationError(StudioError):
    """Missing portrait, empty edit instruction, or no artifact to work from."""


class BusyError(StudioError):
    """A generation or edit request is already outstanding."""


class IndexOutOfRange(StudioError, IndexError):
    """Slot index outside 0..6."""
