from __future__ import annotations

from makeoverkit.studio.api.client import MakeoverGeneratorClient
from makeoverkit.studio.api.mock_client import MockMakeoverGeneratorClient
from makeoverkit.studio.config import StudioConfig


def build_client(config: StudioConfig) -> MakeoverGeneratorClient:
    if config.backend == "mock":
        return MockMakeoverGeneratorClient(delay_s=config.mock_delay_s)

    if config.backend == "openai":
        # Imported lazily so the mock backend works without the OpenAI SDK configured.
        from makeoverkit.studio.api.openai_client import (
            OpenAIMakeoverClientConfig,
            OpenAIMakeoverGeneratorClient,
        )

        return OpenAIMakeoverGeneratorClient(
            api_key=config.openai_api_key,
            config=OpenAIMakeoverClientConfig(model=config.model, timeout_s=config.timeout_s),
        )

    raise ValueError(f"Unknown backend: {config.backend}")
