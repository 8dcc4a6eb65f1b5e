from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class InputLayout:
    """
    Where each kind of reference sits in the image list sent to the model.
    1-based, because that is how the prompt talks about them.
    """
    portrait_position: int
    element_positions: tuple[int, ...]
    vibe_position: int | None

    @property
    def total(self) -> int:
        return 1 + len(self.element_positions) + (1 if self.vibe_position is not None else 0)


def input_layout(*, num_elements: int, has_vibe: bool) -> InputLayout:
    if not 0 <= num_elements <= 5:
        raise ValueError(f"num_elements must be in [0, 5], got {num_elements}")
    elements = tuple(range(2, 2 + num_elements))
    vibe = (2 + num_elements) if has_vibe else None
    return InputLayout(portrait_position=1, element_positions=elements, vibe_position=vibe)


def _input_contract_block(layout: InputLayout) -> str:
    # Positions must match the upload order in openai_client.
    lines = [
        "Input images (in order):",
        f"- Image {layout.portrait_position}: the MAIN PORTRAIT. This is the person receiving the makeover.",
    ]
    for n, pos in enumerate(layout.element_positions, start=1):
        lines.append(f"- Image {pos}: STYLE ELEMENT {n} (clothing, accessory, hairstyle or makeup to apply).")
    if layout.vibe_position is not None:
        lines.append(
            f"- Image {layout.vibe_position}: VIBE REFERENCE. Use only for mood, lighting, color palette and overall style."
        )
    if not layout.element_positions:
        lines.append("- No style elements were supplied; restyle the person using the vibe and your own judgement.")
    return "\n".join(lines) + "\n"


COMPOSITE_PREAMBLE = """\
You are a professional stylist and photo editor.

Your task is to produce ONE new photorealistic image of the person in the main portrait,
wearing or featuring the supplied style elements.

Hard requirements:
- Preserve the person's identity: face shape, facial features, skin tone and age.
- Apply every style element naturally, with correct fit, scale, lighting and shadows.
- Produce a single coherent photograph, not a collage.
"""


ADJUSTMENT_PREAMBLE = """\
You are a professional photo editor.

Your task is to apply the requested change to the given image and return the edited image.

Hard requirements:
- Change only what the request asks for.
- Preserve the person's identity and everything the request does not mention.
- Keep the framing, resolution and photographic style of the original.
"""


NEGATIVE_DEFAULT = """\
Do NOT:
- introduce borders, frames, captions, logos, watermarks, or UI elements
- place the input images side by side or return any of them unchanged
- change the person into someone else
"""


def render_composite_prompt(*, layout: InputLayout, negative: str | None) -> str:
    neg = NEGATIVE_DEFAULT if negative is None else negative.strip() + "\n"
    return (
        f"{COMPOSITE_PREAMBLE}\n"
        f"{_input_contract_block(layout)}\n"
        f"{neg}\n"
        f"Output: a single image.\n"
    )


def render_adjustment_prompt(*, instruction: str, negative: str | None) -> str:
    neg = NEGATIVE_DEFAULT if negative is None else negative.strip() + "\n"
    return (
        f"{ADJUSTMENT_PREAMBLE}\n"
        f"{neg}\n"
        f"Edit request:\n"
        f"{instruction}\n"
    )
