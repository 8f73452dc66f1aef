from __future__ import annotations

from typing import Dict, Optional

import httpx

from libs.core.models import NormalizedResponse, SectionRequest, SectionResult

from ..normalizer import normalize_openai_response
from .base import (
    DEFAULT_TIMEOUT_S,
    LLMProvider,
    ModelConfig,
    chat_payload,
    generate_section_with,
    post_json,
    resolve_model_config,
)

MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
MISTRAL_DEFAULT_MODEL = "mistral-large"
MISTRAL_TEMPERATURE = 0.7

MISTRAL_MODELS: Dict[str, ModelConfig] = {
    "mistral-large": ModelConfig("mistral-large-latest", 32000, 4096),
    "mistral-medium": ModelConfig("mistral-medium-latest", 32000, 4096),
    "mistral-small": ModelConfig("mistral-small-latest", 32000, 4096),
}


class MistralClient(LLMProvider):
    name = "mistral"

    def __init__(
        self,
        api_key: str,
        base_url: str = MISTRAL_BASE_URL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
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
        config = resolve_model_config(MISTRAL_MODELS, model, MISTRAL_DEFAULT_MODEL)
        payload = chat_payload(
            config.model_id,
            prompt,
            max_tokens if max_tokens is not None else config.max_output_tokens,
            temperature if temperature is not None else MISTRAL_TEMPERATURE,
        )
        data = await post_json(
            f"{self.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            payload=payload,
            label="Mistral",
            timeout_s=self.timeout_s,
            transport=self._transport,
        )
        return normalize_openai_response(data)

    async def generate_section(self, request: SectionRequest) -> SectionResult:
        return await generate_section_with(self.complete, request, MISTRAL_TEMPERATURE)

    def is_available(self) -> bool:
        return bool(self.api_key)
