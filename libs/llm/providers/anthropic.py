from __future__ import annotations

from typing import Dict, Optional

import httpx

from libs.core.models import NormalizedResponse, SectionRequest, SectionResult

from ..normalizer import normalize_anthropic_response
from .base import (
    DEFAULT_TIMEOUT_S,
    LLMProvider,
    ModelConfig,
    generate_section_with,
    post_json,
    resolve_model_config,
)

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_DEFAULT_MODEL = "claude-sonnet-4-5"
ANTHROPIC_TEMPERATURE = 0.7

ANTHROPIC_MODELS: Dict[str, ModelConfig] = {
    "claude-opus-4-5": ModelConfig("claude-opus-4-5", 200000, 16384),
    "claude-sonnet-4-5": ModelConfig("claude-sonnet-4-5", 200000, 8192),
    "claude-haiku-4-5": ModelConfig("claude-haiku-4-5", 200000, 8192),
}


class AnthropicClient(LLMProvider):
    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        base_url: str = ANTHROPIC_BASE_URL,
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
        config = resolve_model_config(ANTHROPIC_MODELS, model, ANTHROPIC_DEFAULT_MODEL)
        payload = {
            "model": config.model_id,
            "max_tokens": max_tokens if max_tokens is not None else config.max_output_tokens,
            "temperature": temperature if temperature is not None else ANTHROPIC_TEMPERATURE,
            "messages": [{"role": "user", "content": prompt}],
        }
        data = await post_json(
            f"{self.base_url}/messages",
            headers={
                "Content-Type": "application/json",
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            payload=payload,
            label="Anthropic",
            timeout_s=self.timeout_s,
            transport=self._transport,
        )
        return normalize_anthropic_response(data)

    async def generate_section(self, request: SectionRequest) -> SectionResult:
        return await generate_section_with(self.complete, request, ANTHROPIC_TEMPERATURE)

    def is_available(self) -> bool:
        return bool(self.api_key)
