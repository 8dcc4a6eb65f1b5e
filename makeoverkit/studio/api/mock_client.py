# makeoverkit/studio/api/mock_client.py
from __future__ import annotations

import asyncio
import hashlib
from typing import Final, Optional, Sequence

from PIL import Image, ImageEnhance, ImageOps, ImageStat

from makeoverkit.studio.api.client import MakeoverGeneratorClient
from makeoverkit.studio.io.images import Artifact, ImageRef, file_to_image

OUTPUT_PX: Final[int] = 1024
ELEMENT_STRIP_PX: Final[int] = OUTPUT_PX // 5
VIBE_BLEND: Final[float] = 0.25


def _rgb(img: Image.Image) -> Image.Image:
    return img.convert("RGB") if img.mode != "RGB" else img


def _mean_color(img: Image.Image) -> tuple[int, int, int]:
    r, g, b = ImageStat.Stat(_rgb(img)).mean[:3]
    return int(r), int(g), int(b)


def _seed_bytes(instruction: str) -> bytes:
    return hashlib.sha256(instruction.strip().encode("utf-8")).digest()


def compose_makeover(
    *,
    portrait: Image.Image,
    elements: Sequence[Image.Image],
    vibe: Optional[Image.Image],
) -> Image.Image:
    """
    Deterministic stand-in for a real composite:
      - portrait fills the square canvas (center crop)
      - each style element becomes a thumbnail along the bottom edge, left to right
      - a vibe image, if any, tints the whole result toward its mean color

    Same inputs always give byte-identical PNGs.
    """
    canvas = ImageOps.fit(_rgb(portrait), (OUTPUT_PX, OUTPUT_PX))

    for i, el in enumerate(elements[:5]):
        thumb = ImageOps.fit(_rgb(el), (ELEMENT_STRIP_PX, ELEMENT_STRIP_PX))
        canvas.paste(thumb, (i * ELEMENT_STRIP_PX, OUTPUT_PX - ELEMENT_STRIP_PX))

    if vibe is not None:
        tint = Image.new("RGB", canvas.size, _mean_color(vibe))
        canvas = Image.blend(canvas, tint, VIBE_BLEND)

    return canvas


def adjust_image(*, source: Image.Image, instruction: str) -> Image.Image:
    """
    Deterministic stand-in for an instruction-driven edit.
    The instruction's hash picks a brightness and saturation change, so
    different instructions give visibly different results.
    """
    digest = _seed_bytes(instruction)
    brightness = 0.8 + (digest[0] / 255.0) * 0.4
    saturation = 0.6 + (digest[1] / 255.0) * 0.8

    img = ImageEnhance.Brightness(_rgb(source)).enhance(brightness)
    img = ImageEnhance.Color(img).enhance(saturation)
    return img


class MockMakeoverGeneratorClient(MakeoverGeneratorClient):
    """
    Offline backend for tests and demos. `delay_s` simulates a slow
    request so the busy state is observable in the UI.
    """

    def __init__(self, *, delay_s: float = 0.0) -> None:
        self._delay_s = max(0.0, float(delay_s))
        self.calls: list[str] = []

    async def _latency(self) -> None:
        if self._delay_s:
            await asyncio.sleep(self._delay_s)
        else:
            await asyncio.sleep(0)

    async def generate_composite(
        self,
        *,
        portrait: ImageRef,
        elements: Sequence[ImageRef],
        vibe: Optional[ImageRef],
    ) -> Artifact:
        self.calls.append("composite")
        await self._latency()
        out = compose_makeover(
            portrait=file_to_image(portrait),
            elements=[file_to_image(e) for e in elements],
            vibe=file_to_image(vibe) if vibe is not None else None,
        )
        return Artifact.from_image(out)

    async def generate_adjustment(self, *, source: ImageRef, instruction: str) -> Artifact:
        if not instruction.strip():
            raise ValueError("instruction must not be empty")
        self.calls.append("adjustment")
        await self._latency()
        out = adjust_image(source=file_to_image(source), instruction=instruction)
        return Artifact.from_image(out)
