# makeoverkit/studio/state/history.py
from __future__ import annotations

from typing import Optional

from makeoverkit.studio.io.images import Artifact


class HistorySequence:
    """
    Linear undo/redo history of generated artifacts.

    Invariants:
      - cursor is -1 exactly when the sequence is empty
      - otherwise 0 <= cursor <= len - 1
      - append() always leaves cursor == len - 1

    append() truncates: whatever sits after the cursor (the redo branch)
    is dropped before the new artifact goes in. There is no branch tree.
    """

    def __init__(self) -> None:
        self._items: list[Artifact] = []
        self._cursor = -1

    def __len__(self) -> int:
        return len(self._items)

    @property
    def cursor(self) -> int:
        return self._cursor

    def reset(self) -> None:
        self._items = []
        self._cursor = -1

    def append(self, artifact: Artifact) -> None:
        del self._items[self._cursor + 1:]
        self._items.append(artifact)
        self._cursor = len(self._items) - 1

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._items) - 1

    def undo(self) -> bool:
        if not self.can_undo():
            return False
        self._cursor -= 1
        return True

    def redo(self) -> bool:
        if not self.can_redo():
            return False
        self._cursor += 1
        return True

    def current(self) -> Optional[Artifact]:
        if self._cursor == -1:
            return None
        return self._items[self._cursor]

    def items(self) -> tuple[Artifact, ...]:
        return tuple(self._items)
