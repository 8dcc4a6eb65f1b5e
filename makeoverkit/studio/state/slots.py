# makeoverkit/studio/state/slots.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from makeoverkit.studio.errors import IndexOutOfRange
from makeoverkit.studio.io.images import ImageRef

NUM_SLOTS = 7
PORTRAIT_INDEX = 0
ELEMENT_INDICES = range(1, 6)
VIBE_INDEX = 6


class SlotRole(Enum):
    PORTRAIT = "portrait"
    STYLE_ELEMENT = "style_element"
    VIBE = "vibe"


def role_for_index(index: int) -> SlotRole:
    _check_index(index)
    if index == PORTRAIT_INDEX:
        return SlotRole.PORTRAIT
    if index == VIBE_INDEX:
        return SlotRole.VIBE
    return SlotRole.STYLE_ELEMENT


def label_for_index(index: int) -> str:
    # These strings are shown verbatim by the UI.
    role = role_for_index(index)
    if role is SlotRole.PORTRAIT:
        return "Face / Portrait*"
    if role is SlotRole.VIBE:
        return "Vibe Image"
    return f"Element {index}"


def _check_index(index: int) -> None:
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < NUM_SLOTS:
        raise IndexOutOfRange(f"slot index must be in [0, {NUM_SLOTS - 1}], got {index!r}")


@dataclass(frozen=True)
class GenerationInputs:
    """
    Snapshot of what a full generation is built from.

    Derived from a SlotStore at request time; later slot edits do not
    reach a request that already captured its inputs.
    """
    portrait: Optional[ImageRef]
    elements: tuple[ImageRef, ...] = ()
    vibe: Optional[ImageRef] = None


class SlotStore:
    """Seven fixed input positions: portrait, five style elements, vibe."""

    def __init__(self) -> None:
        self._slots: list[Optional[ImageRef]] = [None] * NUM_SLOTS

    def set_all(self, images: Iterable[ImageRef]) -> None:
        slots: list[Optional[ImageRef]] = [None] * NUM_SLOTS
        for i, img in enumerate(images):
            if i >= NUM_SLOTS:
                break
            slots[i] = img
        self._slots = slots

    def set(self, index: int, image: ImageRef) -> None:
        _check_index(index)
        self._slots[index] = image

    def clear(self, index: int) -> None:
        _check_index(index)
        self._slots[index] = None

    def get(self, index: int) -> Optional[ImageRef]:
        _check_index(index)
        return self._slots[index]

    def portrait(self) -> Optional[ImageRef]:
        return self._slots[PORTRAIT_INDEX]

    def elements(self) -> list[ImageRef]:
        return [img for img in (self._slots[i] for i in ELEMENT_INDICES) if img is not None]

    def vibe(self) -> Optional[ImageRef]:
        return self._slots[VIBE_INDEX]

    def has_any(self) -> bool:
        return any(img is not None for img in self._slots)

    def snapshot(self) -> tuple[Optional[ImageRef], ...]:
        return tuple(self._slots)

    def generation_inputs(self) -> GenerationInputs:
        return GenerationInputs(
            portrait=self.portrait(),
            elements=tuple(self.elements()),
            vibe=self.vibe(),
        )
