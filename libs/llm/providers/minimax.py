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

MINIMAX_BASE_URL = "https://api.minimax.io/v1"
MINIMAX_DEFAULT_MODEL = "minimax-m2"
MINIMAX_TEMPERATURE = 0.7
MINIMAX_DEFAULT_MAX_TOKENS = 4096

MINIMAX_MODELS: Dict[str, ModelConfig] = {
    "minimax-m2.1": ModelConfig("MiniMax-M2.1", 1000000, 1000000),
    "minimax-m2.1-lightning": ModelConfig("MiniMax-M2.1-lightning", 1000000, 1000000),
    "minimax-m2": ModelConfig("MiniMax-M2", 1000000, 1000000),
    "minimax-01": ModelConfig("MiniMax-Text-01", 4000000, 4000000),
}


class MinimaxClient(LLMProvider):
    name = "minimax"

    def __init__(
        self,
        api_key: str,
        base_url: str = MINIMAX_BASE_URL,
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
        config = resolve_model_config(MINIMAX_MODELS, model, MINIMAX_DEFAULT_MODEL)
        if max_tokens is None:
            max_tokens = min(config.max_output_tokens, MINIMAX_DEFAULT_MAX_TOKENS)
        payload = chat_payload(
            config.model_id,
            prompt,
            max_tokens,
            temperature if temperature is not None else MINIMAX_TEMPERATURE,
        )
        data = await post_json(
            f"{self.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            payload=payload,
            label="Minimax",
            timeout_s=self.timeout_s,
            transport=self._transport,
        )
        return normalize_openai_response(data)

    async def generate_section(self, request: SectionRequest) -> SectionResult:
        return await generate_section_with(self.complete, request, MINIMAX_TEMPERATURE)

    def is_available(self) -> bool:
        return bool(self.api_key)
