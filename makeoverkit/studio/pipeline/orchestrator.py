# makeoverkit/studio/pipeline/orchestrator.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from makeoverkit.studio.api.client import MakeoverGeneratorClient
from makeoverkit.studio.errors import BusyError, ValidationError
from makeoverkit.studio.io.images import Artifact, artifact_to_file, timestamp_ms
from makeoverkit.studio.state.dirty import DirtyTracker
from makeoverkit.studio.state.history import HistorySequence
from makeoverkit.studio.state.slots import GenerationInputs

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "An unknown error occurred."
COMPOSITE_FAILURE_PREFIX = "Failed to generate the makeover."
EDIT_FAILURE_PREFIX = "Failed to apply edit."


class OrchestratorStatus(Enum):
    IDLE = "idle"
    GENERATING = "generating"
    ERROR = "error"


@dataclass(frozen=True)
class OrchestratorState:
    status: OrchestratorStatus
    message: str | None = None

    @classmethod
    def idle(cls) -> "OrchestratorState":
        return cls(OrchestratorStatus.IDLE)

    @classmethod
    def generating(cls) -> "OrchestratorState":
        return cls(OrchestratorStatus.GENERATING)

    @classmethod
    def error(cls, message: str) -> "OrchestratorState":
        return cls(OrchestratorStatus.ERROR, message)


def _failure_message(prefix: str, e: BaseException) -> str:
    detail = str(e).strip() or UNKNOWN_ERROR
    return f"{prefix} {detail}"


class GenerationOrchestrator:
    """
    Single-flight state machine around the image backend.

        IDLE  --start_full_generation / start_edit-->  GENERATING
        GENERATING --success-->  IDLE   (history.append, dirty.mark_clean)
        GENERATING --failure-->  ERROR(message)
        ERROR --dismiss-->  IDLE

    A start is also accepted from ERROR; it replaces the error.
    Starting while GENERATING raises BusyError and leaves the running
    request alone.

    Each request carries the session token current at start time.
    abandon() bumps the token, so a completion that lands afterwards is
    dropped instead of being appended to a history it no longer belongs to.
    """

    def __init__(
        self,
        client: MakeoverGeneratorClient,
        history: HistorySequence,
        dirty: DirtyTracker,
        *,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self._client = client
        self._history = history
        self._dirty = dirty
        self._on_change = on_change
        self._state = OrchestratorState.idle()
        self._token = 0
        self._inflight: Optional[asyncio.Task] = None
        # the loop only holds weak references to tasks
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state.status is OrchestratorStatus.GENERATING

    @property
    def session_token(self) -> int:
        return self._token

    @property
    def inflight(self) -> Optional[asyncio.Task]:
        return self._inflight

    # ------------------------
    # transitions

    def start_full_generation(self, inputs: GenerationInputs) -> "asyncio.Task[Optional[Artifact]]":
        self._ensure_not_busy()
        if inputs.portrait is None:
            raise ValidationError("Please provide a main portrait image to start the makeover.")
        loop = asyncio.get_running_loop()

        # A full generation starts a new sequence; edits extend the current one.
        self._history.reset()

        portrait = inputs.portrait
        elements = list(inputs.elements)
        vibe = inputs.vibe

        async def call() -> Artifact:
            return await self._client.generate_composite(portrait=portrait, elements=elements, vibe=vibe)

        logger.info("starting full generation: %d element(s), vibe=%s", len(elements), vibe is not None)
        return self._launch(loop, call, COMPOSITE_FAILURE_PREFIX)

    def start_edit(self, source: Optional[Artifact], instruction: str) -> "asyncio.Task[Optional[Artifact]]":
        self._ensure_not_busy()
        if source is None:
            raise ValidationError("There is no generated image to edit.")
        instruction = (instruction or "").strip()
        if not instruction:
            raise ValidationError("Please describe the edit to apply.")
        loop = asyncio.get_running_loop()

        async def call() -> Artifact:
            source_file = artifact_to_file(source, f"edit-source-{timestamp_ms()}.png")
            return await self._client.generate_adjustment(source=source_file, instruction=instruction)

        logger.info("starting edit: %r", instruction)
        return self._launch(loop, call, EDIT_FAILURE_PREFIX)

    def dismiss(self) -> None:
        if self._state.status is OrchestratorStatus.ERROR:
            self._set_state(OrchestratorState.idle())

    def report_error(self, message: str) -> None:
        """Surface a failure that happened outside a backend call (e.g. artifact conversion)."""
        self._set_state(OrchestratorState.error(message))

    def abandon(self) -> None:
        """
        Forget any in-flight request and return to IDLE.
        The request itself keeps running; its result will be ignored.
        """
        self._token += 1
        if self._inflight is not None and not self._inflight.done():
            logger.info("abandoning in-flight request (session token now %d)", self._token)
        self._inflight = None
        self._set_state(OrchestratorState.idle())

    # ------------------------
    # helpers

    def _ensure_not_busy(self) -> None:
        if self.is_busy:
            raise BusyError("A generation is already in progress.")

    def _set_state(self, state: OrchestratorState, *, notify: bool = False) -> None:
        if state == self._state and not notify:
            return
        logger.debug("orchestrator %s -> %s", self._state.status.value, state.status.value)
        self._state = state
        if self._on_change is not None:
            self._on_change()

    def _launch(
        self,
        loop: asyncio.AbstractEventLoop,
        call: Callable[[], Awaitable[Artifact]],
        failure_prefix: str,
    ) -> "asyncio.Task[Optional[Artifact]]":
        token = self._token
        self._set_state(OrchestratorState.generating())
        task = loop.create_task(self._run(call, token, failure_prefix))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._inflight = task
        return task

    async def _run(
        self,
        call: Callable[[], Awaitable[Artifact]],
        token: int,
        failure_prefix: str,
    ) -> Optional[Artifact]:
        try:
            artifact = await call()
            if not isinstance(artifact, Artifact):
                raise TypeError(f"backend returned {type(artifact).__name__}, not an image")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if token != self._token:
                logger.info("discarding failure from stale request (token %d != %d)", token, self._token)
                return None
            logger.warning("%s", _failure_message(failure_prefix, e), exc_info=True)
            self._inflight = None
            self._set_state(OrchestratorState.error(_failure_message(failure_prefix, e)))
            return None

        if token != self._token:
            logger.info("discarding result from stale request (token %d != %d)", token, self._token)
            return None

        self._history.append(artifact)
        self._dirty.mark_clean()
        self._inflight = None
        logger.info("generation committed at history index %d", self._history.cursor)
        self._set_state(OrchestratorState.idle(), notify=True)
        return artifact
