from __future__ import annotations

from typing import Dict, Optional

import httpx

from libs.core.models import NormalizedResponse, SectionRequest, SectionResult, ZaiEndpointType

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

ZAI_DEFAULT_MODEL = "glm-4.5"
ZAI_TEMPERATURE = 0.6

ZAI_MODELS: Dict[str, ModelConfig] = {
    "glm-4.7": ModelConfig("glm-4.7", 204800, 131100),
    "glm-4.6": ModelConfig("glm-4.6", 128000, 96000),
    "glm-4.5": ModelConfig("glm-4.5", 128000, 96000),
    "glm-4.5-air": ModelConfig("glm-4.5-air", 128000, 96000),
    "glm-4.5-flash": ModelConfig("glm-4.5-flash", 128000, 96000),
}

ZAI_ENDPOINTS: Dict[ZaiEndpointType, str] = {
    ZaiEndpointType.paid: "https://api.z.ai/api/paas/v4",
    ZaiEndpointType.coding: "https://api.z.ai/api/coding/paas/v4",
}

ZAI_ENDPOINTS_CN: Dict[ZaiEndpointType, str] = {
    ZaiEndpointType.paid: "https://open.bigmodel.cn/api/paas/v4",
    ZaiEndpointType.coding: "https://open.bigmodel.cn/api/coding/paas/v4",
}


def zai_base_url(endpoint_type: ZaiEndpointType | str = ZaiEndpointType.paid, is_china: bool = False) -> str:
    endpoints = ZAI_ENDPOINTS_CN if is_china else ZAI_ENDPOINTS
    return endpoints[ZaiEndpointType(endpoint_type)]


class ZAIClient(LLMProvider):
    name = "zai"

    def __init__(
        self,
        api_key: str,
        endpoint_type: ZaiEndpointType | str = ZaiEndpointType.paid,
        is_china: bool = False,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = zai_base_url(endpoint_type, is_china)
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
        config = resolve_model_config(ZAI_MODELS, model, ZAI_DEFAULT_MODEL)
        payload = chat_payload(
            config.model_id,
            prompt,
            max_tokens if max_tokens is not None else config.max_output_tokens,
            temperature if temperature is not None else ZAI_TEMPERATURE,
        )
        data = await post_json(
            f"{self.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            payload=payload,
            label="Z.AI",
            timeout_s=self.timeout_s,
            transport=self._transport,
        )
        # GLM reasoning models may only fill reasoning_content.
        return normalize_openai_response(data)

    async def generate_section(self, request: SectionRequest) -> SectionResult:
        return await generate_section_with(self.complete, request, ZAI_TEMPERATURE)

    def is_available(self) -> bool:
        return bool(self.api_key)
