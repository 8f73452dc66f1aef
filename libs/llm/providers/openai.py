from __future__ import annotations

from typing import Dict, Optional

import httpx

from libs.core.models import NormalizedResponse, SectionRequest, SectionResult

from ..normalizer import normalize_openai_response
from .base import LLMProvider, ModelConfig, chat_payload, generate_section_with, post_json, resolve_model_config

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENAI_DEFAULT_MODEL = "gpt-4o"
OPENAI_TEMPERATURE = 0.7

OPENAI_MODELS: Dict[str, ModelConfig] = {
    "gpt-4o": ModelConfig("gpt-4o", 128000, 16384),
    "gpt-4o-mini": ModelConfig("gpt-4o-mini", 128000, 16384),
}


class OpenAIClient(LLMProvider):
    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = OPENAI_BASE_URL,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        # No client-side timeout unless one is configured explicitly.
        self.timeout_s = timeout_s
        self._transport = transport

    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> NormalizedResponse:
        config = resolve_model_config(OPENAI_MODELS, model, OPENAI_DEFAULT_MODEL)
        payload = chat_payload(
            config.model_id,
            prompt,
            max_tokens if max_tokens is not None else config.max_output_tokens,
            temperature if temperature is not None else OPENAI_TEMPERATURE,
        )
        data = await post_json(
            f"{self.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            payload=payload,
            label="OpenAI",
            timeout_s=self.timeout_s,
            transport=self._transport,
        )
        return normalize_openai_response(data)

    async def generate_section(self, request: SectionRequest) -> SectionResult:
        return await generate_section_with(self.complete, request, OPENAI_TEMPERATURE)

    def is_available(self) -> bool:
        return bool(self.api_key)
