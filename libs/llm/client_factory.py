from __future__ import annotations

from typing import Optional

import httpx

from libs.core import logging as core_logging
from libs.core.config import GenerationSettings
from libs.core.models import ProviderCredentials, ZaiEndpointType

from .providers import (
    AnthropicClient,
    LLMProvider,
    MinimaxClient,
    MistralClient,
    OpenAIClient,
    ZAIClient,
)

logger = core_logging.get_logger("llm.client_factory")


def create_llm_client(
    credentials: Optional[ProviderCredentials],
    settings: Optional[GenerationSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[LLMProvider]:
    if credentials is None or not credentials.api_key:
        return None
    settings = settings or GenerationSettings()
    provider = credentials.provider
    if provider == "openai":
        return OpenAIClient(
            credentials.api_key, timeout_s=settings.openai_timeout_s, transport=transport
        )
    if provider == "anthropic":
        return AnthropicClient(credentials.api_key, timeout_s=settings.timeout_s, transport=transport)
    if provider == "mistral":
        return MistralClient(credentials.api_key, timeout_s=settings.timeout_s, transport=transport)
    if provider == "zai":
        return ZAIClient(
            credentials.api_key,
            endpoint_type=credentials.zai_endpoint_type or ZaiEndpointType.paid,
            is_china=bool(credentials.zai_is_china),
            timeout_s=settings.timeout_s,
            transport=transport,
        )
    if provider == "minimax":
        return MinimaxClient(credentials.api_key, timeout_s=settings.timeout_s, transport=transport)
    logger.warning("unsupported_provider", provider=provider)
    return None
