from __future__ import annotations


class DirtyTracker:
    """True once any slot changed after the displayed artifact was produced."""

    def __init__(self) -> None:
        self._dirty = False

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def mark_clean(self) -> None:
        self._dirty = False

    def mark_dirty(self) -> None:
        self._dirty = True
