from __future__ import annotations

from typing import Optional, Protocol, Sequence

from makeoverkit.studio.io.images import Artifact, ImageRef


class MakeoverGeneratorClient(Protocol):
    """
    The only contract the studio needs from an image backend:

    - generate_composite: portrait + 0..5 style elements + optional vibe -> new image
    - generate_adjustment: one image + a non-empty instruction -> edited image

    Both are coroutines and either return an Artifact or raise.
    """

    async def generate_composite(
        self,
        *,
        portrait: ImageRef,
        elements: Sequence[ImageRef],
        vibe: Optional[ImageRef],
    ) -> Artifact:
        ...

    async def generate_adjustment(
        self,
        *,
        source: ImageRef,
        instruction: str,
    ) -> Artifact:
        ...


class GeneratorError(RuntimeError):
    """Base class for generator failures."""


class GeneratorTransientError(GeneratorError):
    """Network glitches, rate limits, timeouts."""


class GeneratorPermanentError(GeneratorError):
    """Bad auth, bad request, unsupported model, unusable response."""


class GeneratorSafetyRefusal(GeneratorError):
    """Model refused due to content policy."""


class GeneratorBillingLimitError(GeneratorPermanentError):
    """Requests are blocked because the account/org is at a billing hard limit."""
