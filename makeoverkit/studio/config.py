"""Configuration for the makeover studio."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from makeoverkit.paths import OUTPUT_IMAGES

BACKENDS = ("mock", "openai")


@dataclass
class StudioConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    backend: str = "mock"
    model: str = "gpt-image-1"
    timeout_s: Optional[float] = None
    mock_delay_s: float = 0.0
    output_dir: Path = field(default_factory=lambda: OUTPUT_IMAGES)
    log_level: str = "INFO"
    openai_api_key: Optional[str] = None


def _int_or(value: Optional[str], default: int) -> int:
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_or(value: Optional[str], default: Optional[float]) -> Optional[float]:
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_config(environ: Optional[Mapping[str, str]] = None) -> StudioConfig:
    """Build a StudioConfig from MAKEOVER_* environment variables."""
    env = os.environ if environ is None else environ

    backend = (env.get("MAKEOVER_BACKEND") or "mock").strip().lower()
    if backend not in BACKENDS:
        raise ValueError(f"MAKEOVER_BACKEND must be one of {BACKENDS}, got {backend!r}")

    output_dir = env.get("MAKEOVER_OUTPUT_DIR")

    return StudioConfig(
        host=env.get("MAKEOVER_HOST") or "127.0.0.1",
        port=_int_or(env.get("MAKEOVER_PORT"), 8000),
        backend=backend,
        model=env.get("MAKEOVER_MODEL") or "gpt-image-1",
        timeout_s=_float_or(env.get("MAKEOVER_TIMEOUT_S"), None),
        mock_delay_s=max(0.0, _float_or(env.get("MAKEOVER_MOCK_DELAY_S"), 0.0) or 0.0),
        output_dir=Path(output_dir).expanduser() if output_dir else OUTPUT_IMAGES,
        log_level=(env.get("MAKEOVER_LOG_LEVEL") or "INFO").upper(),
        openai_api_key=env.get("OPENAI_API_KEY") or None,
    )
