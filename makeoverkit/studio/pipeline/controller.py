# makeoverkit/studio/pipeline/controller.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from makeoverkit.paths import OUTPUT_IMAGES
from makeoverkit.studio.api.client import MakeoverGeneratorClient
from makeoverkit.studio.errors import BusyError, ValidationError
from makeoverkit.studio.io.atomic_write import atomic_write_bytes
from makeoverkit.studio.io.images import Artifact, ImageRef, artifact_to_file, timestamp_ms
from makeoverkit.studio.pipeline.orchestrator import (
    GenerationOrchestrator,
    OrchestratorState,
    OrchestratorStatus,
)
from makeoverkit.studio.state.dirty import DirtyTracker
from makeoverkit.studio.state.history import HistorySequence
from makeoverkit.studio.state.slots import (
    ELEMENT_INDICES,
    NUM_SLOTS,
    VIBE_INDEX,
    SlotRole,
    SlotStore,
    label_for_index,
    role_for_index,
)

logger = logging.getLogger(__name__)

REFINE_FAILURE_PREFIX = "Failed to set up refinement."

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}

Listener = Callable[["StudioSnapshot"], None]


def export_filename(artifact: Artifact) -> str:
    ext = _EXTENSIONS.get(artifact.mime_type, ".png")
    return f"makeover-{timestamp_ms()}{ext}"


@dataclass(frozen=True)
class SlotView:
    index: int
    role: SlotRole
    label: str
    filename: str | None

    @property
    def filled(self) -> bool:
        return self.filename is not None


@dataclass(frozen=True)
class StudioSnapshot:
    """
    Read-only picture of the engine for the presentation layer.
    The can_* flags are the enablement rules the UI applies to its controls.
    """
    slots: tuple[SlotView, ...]
    cursor: int
    history_length: int
    status: OrchestratorStatus
    error: str | None
    dirty: bool
    session_token: int

    @property
    def busy(self) -> bool:
        return self.status is OrchestratorStatus.GENERATING

    @property
    def has_uploaded_images(self) -> bool:
        return any(s.filled for s in self.slots)

    @property
    def has_artifact(self) -> bool:
        return self.cursor >= 0

    @property
    def can_generate(self) -> bool:
        return self.slots[0].filled and not self.busy

    @property
    def can_regenerate(self) -> bool:
        return self.has_artifact and self.dirty and self.can_generate

    @property
    def can_apply_edit(self) -> bool:
        return self.has_artifact and not self.busy

    @property
    def can_undo(self) -> bool:
        return self.cursor > 0 and not self.busy

    @property
    def can_redo(self) -> bool:
        return self.cursor < self.history_length - 1 and not self.busy

    @property
    def can_download(self) -> bool:
        return self.has_artifact and not self.busy

    @property
    def can_reuse(self) -> bool:
        return self.has_artifact and not self.busy

    def to_dict(self) -> dict:
        return {
            "slots": [
                {"index": s.index, "role": s.role.value, "label": s.label, "filename": s.filename}
                for s in self.slots
            ],
            "cursor": self.cursor,
            "history_length": self.history_length,
            "status": self.status.value,
            "error": self.error,
            "dirty": self.dirty,
            "session_token": self.session_token,
            "busy": self.busy,
            "has_uploaded_images": self.has_uploaded_images,
            "has_artifact": self.has_artifact,
            "can_generate": self.can_generate,
            "can_regenerate": self.can_regenerate,
            "can_apply_edit": self.can_apply_edit,
            "can_undo": self.can_undo,
            "can_redo": self.can_redo,
            "can_download": self.can_download,
            "can_reuse": self.can_reuse,
        }


class CompositionController:
    """
    Entry point for every user intent.

    Slot mutations, undo/redo and resets happen synchronously. generate()
    and apply_edit() hand the backend call to the orchestrator and return
    the asyncio.Task that completes it; they must be called with an event
    loop running.
    """

    def __init__(
        self,
        client: MakeoverGeneratorClient,
        *,
        output_dir: Optional[Path] = None,
    ) -> None:
        self._slots = SlotStore()
        self._history = HistorySequence()
        self._dirty = DirtyTracker()
        self._orchestrator = GenerationOrchestrator(
            client,
            self._history,
            self._dirty,
            on_change=self._notify,
        )
        self._output_dir = Path(output_dir) if output_dir is not None else None
        self._listeners: list[Listener] = []

    # ------------------------
    # read side

    @property
    def slots(self) -> SlotStore:
        return self._slots

    @property
    def history(self) -> HistorySequence:
        return self._history

    @property
    def is_dirty(self) -> bool:
        return self._dirty.is_dirty

    @property
    def state(self) -> OrchestratorState:
        return self._orchestrator.state

    @property
    def orchestrator(self) -> GenerationOrchestrator:
        return self._orchestrator

    def current_artifact(self) -> Optional[Artifact]:
        return self._history.current()

    def snapshot(self) -> StudioSnapshot:
        images = self._slots.snapshot()
        slots = tuple(
            SlotView(
                index=i,
                role=role_for_index(i),
                label=label_for_index(i),
                filename=images[i].filename if images[i] is not None else None,
            )
            for i in range(NUM_SLOTS)
        )
        st = self._orchestrator.state
        return StudioSnapshot(
            slots=slots,
            cursor=self._history.cursor,
            history_length=len(self._history),
            status=st.status,
            error=st.message if st.status is OrchestratorStatus.ERROR else None,
            dirty=self._dirty.is_dirty,
            session_token=self._orchestrator.session_token,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener(snapshot)` after every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            listener(snap)

    # ------------------------
    # slot intents

    def upload(self, files: Iterable[ImageRef]) -> None:
        """Fill slots 0..6 in order from `files`; anything past the seventh is ignored."""
        files = list(files)
        if not files:
            return
        if len(files) > NUM_SLOTS:
            logger.info("upload: keeping first %d of %d files", NUM_SLOTS, len(files))

        self._orchestrator.abandon()
        self._slots.set_all(files)
        self._history.reset()
        self._dirty.mark_clean()
        self._notify()

    def set_slot(self, index: int, image: ImageRef) -> None:
        self._slots.set(index, image)
        self._dirty.mark_dirty()
        self._notify()

    def remove_slot(self, index: int) -> None:
        self._slots.clear(index)
        self._dirty.mark_dirty()
        self._notify()

    # ------------------------
    # generation intents

    def generate(self) -> "asyncio.Task[Optional[Artifact]]":
        """Start a full generation (also used for Regenerate). Resets history first."""
        return self._orchestrator.start_full_generation(self._slots.generation_inputs())

    def apply_edit(self, instruction: str) -> "asyncio.Task[Optional[Artifact]]":
        """Edit the displayed artifact; the result is appended after it."""
        return self._orchestrator.start_edit(self._history.current(), instruction)

    def dismiss_error(self) -> None:
        self._orchestrator.dismiss()

    # ------------------------
    # history intents

    def undo(self) -> bool:
        moved = self._history.undo()
        if moved:
            self._notify()
        return moved

    def redo(self) -> bool:
        moved = self._history.redo()
        if moved:
            self._notify()
        return moved

    def start_over(self) -> None:
        self._orchestrator.abandon()
        self._slots.set_all([])
        self._history.reset()
        self._dirty.mark_clean()
        self._notify()

    def reuse_result_as_reference(self) -> None:
        """
        Seed a fresh round from the displayed result:
        portrait kept, style elements cleared, result becomes the vibe,
        history emptied.
        """
        current = self._history.current()
        if current is None:
            raise ValidationError("There is no generated image to reuse.")

        self._orchestrator.abandon()
        try:
            vibe = artifact_to_file(current, f"vibe-from-generated-{timestamp_ms()}.png")
        except ValueError as e:
            logger.warning("could not convert result into a vibe reference", exc_info=True)
            self._orchestrator.report_error(f"{REFINE_FAILURE_PREFIX} {e}")
            return

        for i in ELEMENT_INDICES:
            self._slots.clear(i)
        self._slots.set(VIBE_INDEX, vibe)
        self._history.reset()
        self._dirty.mark_clean()
        self._notify()

    # ------------------------
    # export

    def downloadable_artifact(self) -> Artifact:
        """The displayed artifact, provided nothing is in flight."""
        if self._orchestrator.is_busy:
            raise BusyError("Cannot download while a generation is in progress.")
        current = self._history.current()
        if current is None:
            raise ValidationError("There is no generated image to download.")
        return current

    def export_current(self, directory: Optional[Path] = None) -> Path:
        """Write the displayed artifact as makeover-<ms>.<ext> and return its path."""
        current = self.downloadable_artifact()

        if directory is None:
            directory = self._output_dir
        if directory is None:
            directory = OUTPUT_IMAGES

        path = atomic_write_bytes(Path(directory) / export_filename(current), current.data)
        logger.info("exported current result to %s", path)
        return path
