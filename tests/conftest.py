import asyncio
from typing import Optional, Sequence

import pytest
from PIL import Image

from makeoverkit.studio.api.client import GeneratorTransientError, MakeoverGeneratorClient
from makeoverkit.studio.io.images import Artifact, ImageRef, encode_png_bytes


def make_png_ref(color, name, size=(64, 64)) -> ImageRef:
    """Solid-color PNG wrapped as an uploaded file."""
    img = Image.new("RGB", size, color)
    return ImageRef.from_bytes(encode_png_bytes(img), name)


def make_artifact(color, size=(32, 32)) -> Artifact:
    return Artifact.from_image(Image.new("RGB", size, color))


@pytest.fixture
def portrait():
    return make_png_ref((200, 150, 120), "portrait.png")


@pytest.fixture
def elements():
    return [make_png_ref((10 * i, 40, 200 - 10 * i), f"element_{i}.png") for i in range(1, 6)]


@pytest.fixture
def vibe():
    return make_png_ref((20, 200, 60), "vibe.png")


@pytest.fixture
def patterned_png(tmp_path):
    """
    Deterministic RGB PNG on disk with a strong spatial pattern.
    """
    w = h = 96
    img = Image.new("RGB", (w, h))
    px = img.load()

    for y in range(h):
        for x in range(w):
            r = (x * 37 + y * 17) % 256
            g = (x * 13 + y * 53) % 256
            b = (x * 97 + y * 19) % 256
            px[x, y] = (r, g, b)

    path = tmp_path / "pattern.png"
    img.save(path)
    return path


class GatedClient(MakeoverGeneratorClient):
    """
    Backend whose every call blocks until the test releases it.

    Each call pops the next outcome from `outcomes`: an Artifact is returned,
    an exception is raised. With no outcomes queued a fresh artifact is made.
    """

    def __init__(self, outcomes=None) -> None:
        self.outcomes = list(outcomes or [])
        self.gate = asyncio.Event()
        self.calls: list[tuple[str, dict]] = []
        self._counter = 0

    def release(self) -> None:
        self.gate.set()

    async def _next(self) -> Artifact:
        await self.gate.wait()
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        self._counter += 1
        return make_artifact((self._counter * 20 % 256, 0, 0))

    async def generate_composite(
        self,
        *,
        portrait: ImageRef,
        elements: Sequence[ImageRef],
        vibe: Optional[ImageRef],
    ) -> Artifact:
        self.calls.append(("composite", {"portrait": portrait, "elements": list(elements), "vibe": vibe}))
        return await self._next()

    async def generate_adjustment(self, *, source: ImageRef, instruction: str) -> Artifact:
        self.calls.append(("adjustment", {"source": source, "instruction": instruction}))
        return await self._next()


class ImmediateClient(GatedClient):
    """Same as GatedClient, but never blocks."""

    def __init__(self, outcomes=None) -> None:
        super().__init__(outcomes)
        self.gate.set()


class FailingClient(ImmediateClient):
    def __init__(self, message: str = "simulated timeout") -> None:
        super().__init__([GeneratorTransientError(message)] * 16)


def run(coro):
    return asyncio.run(coro)
