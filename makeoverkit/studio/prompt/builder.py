# makeoverkit/studio/prompt/builder.py
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from makeoverkit.studio.prompt.templates import (
    input_layout,
    render_adjustment_prompt,
    render_composite_prompt,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptPayload:
    """
    Deterministic prompt payload.

    - full_prompt: exact string to send to the generator
    - sha256_hex: content hash of full_prompt (utf-8), handy for logs and caching
    """
    full_prompt: str
    sha256_hex: str


def normalize_instruction(instruction: str) -> str:
    return instruction.replace("\r\n", "\n").strip()


def _payload(full: str) -> PromptPayload:
    logger.debug("API facing prompt:\n%s", full)
    h = hashlib.sha256(full.encode("utf-8")).hexdigest()
    return PromptPayload(full_prompt=full, sha256_hex=h)


def build_composite_payload(
    *,
    num_elements: int,
    has_vibe: bool,
    negative: str | None = None,
) -> PromptPayload:
    layout = input_layout(num_elements=num_elements, has_vibe=has_vibe)
    return _payload(render_composite_prompt(layout=layout, negative=negative))


def build_adjustment_payload(
    *,
    instruction: str,
    negative: str | None = None,
) -> PromptPayload:
    normalized = normalize_instruction(instruction)
    if not normalized:
        raise ValueError("instruction must not be empty")
    return _payload(render_adjustment_prompt(instruction=normalized, negative=negative))
