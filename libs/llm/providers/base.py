from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from libs.core import prompts
from libs.core.errors import LLMProviderError, LLMTimeoutError
from libs.core.models import NormalizedResponse, SectionRequest, SectionResult

DEFAULT_TIMEOUT_S = 120.0


@dataclass(frozen=True)
class ModelConfig:
    model_id: str
    context_tokens: int
    max_output_tokens: int


class LLMProvider:
    """Interface every provider client implements."""

    name = "provider"

    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> NormalizedResponse:  # pragma: no cover - interface
        raise NotImplementedError

    async def generate_section(self, request: SectionRequest) -> SectionResult:  # pragma: no cover - interface
        raise NotImplementedError

    def is_available(self) -> bool:  # pragma: no cover - interface
        raise NotImplementedError


def resolve_model_config(
    models: Mapping[str, ModelConfig], model: str, default: str
) -> ModelConfig:
    return models.get(model) or models[default]


def chat_payload(
    model_id: str, prompt: str, max_tokens: int, temperature: float
) -> Dict[str, Any]:
    return {
        "model": model_id,
        "messages": [{"role": "user", "content": prompt}],
        "max_tokens": max_tokens,
        "temperature": temperature,
    }


def format_timeout(timeout_s: float) -> str:
    return f"{timeout_s:g}"


async def post_json(
    url: str,
    *,
    headers: Dict[str, str],
    payload: Dict[str, Any],
    label: str,
    timeout_s: Optional[float],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """POST a JSON body and return the decoded JSON response.

    Non-2xx responses raise ``LLMProviderError`` carrying the provider's raw body;
    request headers are never part of the message. A client-side timeout raises
    ``LLMTimeoutError``.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
            response = await client.post(url, headers=headers, json=payload)
    except httpx.TimeoutException as exc:
        raise LLMTimeoutError(
            f"API request timed out after {format_timeout(timeout_s or 0)} seconds"
        ) from exc
    except httpx.RequestError as exc:
        raise LLMProviderError(f"{label} API connection error: {exc}") from exc
    if response.status_code < 200 or response.status_code >= 300:
        raise LLMProviderError(f"{label} API error ({response.status_code}): {response.text}")
    try:
        data = response.json()
    except ValueError as exc:
        # Covers both JSONDecodeError and UnicodeDecodeError.
        raise LLMProviderError(f"{label} API returned invalid JSON: {response.text[:200]}") from exc
    if not isinstance(data, dict):
        raise LLMProviderError(f"{label} API returned unexpected payload")
    return data


async def generate_section_with(
    complete: Callable[..., Any],
    request: SectionRequest,
    temperature: float,
) -> SectionResult:
    prompt = (
        f"{prompts.section_system_prompt(request)}\n\n{prompts.section_user_prompt(request)}"
    )
    response = await complete(
        prompt,
        model=request.model_id,
        max_tokens=request.max_tokens,
        temperature=temperature,
    )
    return SectionResult(content=response.content, tokens=response.usage.completion_tokens)
