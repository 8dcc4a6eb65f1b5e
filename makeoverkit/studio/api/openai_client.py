from __future__ import annotations

import base64
import binascii
import io
import logging
import os
from dataclasses import dataclass
from typing import Optional, Sequence

from openai import AsyncOpenAI

from makeoverkit.studio.api.client import (
    MakeoverGeneratorClient,
    GeneratorError,
    GeneratorTransientError,
    GeneratorPermanentError,
    GeneratorSafetyRefusal,
    GeneratorBillingLimitError,
)
from makeoverkit.studio.io.images import Artifact, ImageRef, sniff_mime
from makeoverkit.studio.prompt.builder import build_adjustment_payload, build_composite_payload

logger = logging.getLogger(__name__)

MODEL_DEFAULT = "gpt-image-1"


@dataclass(frozen=True)
class OpenAIMakeoverClientConfig:
    model: str = MODEL_DEFAULT
    size: str = "1024x1024"
    timeout_s: float | None = None


def _upload_file(ref: ImageRef, name: str) -> io.BytesIO:
    f = io.BytesIO(ref.data)
    f.name = name
    return f


def classify_error(e: Exception) -> GeneratorError:
    """Map an SDK/transport exception onto the generator error hierarchy by its message."""
    msg = str(e).lower()

    if (
        "billing_hard_limit" in msg
        or "billing hard limit" in msg
        or "billing_hard_limit_reached" in msg
    ):
        return GeneratorBillingLimitError(str(e))

    if "timeout" in msg or "timed out" in msg or "rate limit" in msg or "connection" in msg:
        return GeneratorTransientError(str(e))

    if "safety" in msg or "policy" in msg:
        return GeneratorSafetyRefusal(str(e))

    return GeneratorPermanentError(str(e))


class OpenAIMakeoverGeneratorClient(MakeoverGeneratorClient):
    """
    OpenAI-backed makeover generator (multi-image conditioned edits).
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        config: OpenAIMakeoverClientConfig | None = None,
    ) -> None:
        if api_key is None:
            api_key = os.environ.get("OPENAI_API_KEY")

        if not api_key:
            raise GeneratorPermanentError("OPENAI_API_KEY not set")

        self._config = config or OpenAIMakeoverClientConfig()
        if self._config.timeout_s is not None:
            self._client = AsyncOpenAI(api_key=api_key, timeout=self._config.timeout_s)
        else:
            self._client = AsyncOpenAI(api_key=api_key)

    async def generate_composite(
        self,
        *,
        portrait: ImageRef,
        elements: Sequence[ImageRef],
        vibe: Optional[ImageRef],
    ) -> Artifact:
        elements = list(elements)
        payload = build_composite_payload(num_elements=len(elements), has_vibe=vibe is not None)

        # Order must match the layout the prompt describes.
        files = [_upload_file(portrait, "portrait.png")]
        files += [_upload_file(el, f"element_{i}.png") for i, el in enumerate(elements, start=1)]
        if vibe is not None:
            files.append(_upload_file(vibe, "vibe.png"))

        logger.info("requesting composite: %d element(s), vibe=%s, prompt=%s",
                    len(elements), vibe is not None, payload.sha256_hex[:12])
        return await self._edit(images=files, prompt=payload.full_prompt)

    async def generate_adjustment(self, *, source: ImageRef, instruction: str) -> Artifact:
        try:
            payload = build_adjustment_payload(instruction=instruction)
        except ValueError as e:
            raise GeneratorPermanentError(str(e)) from e

        logger.info("requesting adjustment: prompt=%s", payload.sha256_hex[:12])
        return await self._edit(images=[_upload_file(source, "source.png")], prompt=payload.full_prompt)

    async def _edit(self, *, images: list[io.BytesIO], prompt: str) -> Artifact:
        try:
            edits_fn = getattr(self._client.images, "edit", None)
            if edits_fn is None:
                edits_fn = getattr(self._client.images, "edits", None)
            if edits_fn is None:
                raise GeneratorPermanentError("OpenAI SDK missing images.edit method")

            result = await edits_fn(
                model=self._config.model,
                image=images,
                prompt=prompt,
                size=self._config.size,
            )
        except GeneratorError:
            raise
        except Exception as e:
            raise classify_error(e) from e

        return self._decode(result)

    @staticmethod
    def _decode(result) -> Artifact:
        try:
            image_base64 = result.data[0].b64_json
            data = base64.b64decode(image_base64, validate=True)
            mime = sniff_mime(data)
        except (AttributeError, IndexError, TypeError, ValueError, binascii.Error) as e:
            raise GeneratorPermanentError("Invalid image response") from e
        return Artifact(data=data, mime_type=mime)
