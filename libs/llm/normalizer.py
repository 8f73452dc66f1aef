"""Canonical view over provider completion payloads.

OpenAI-compatible providers (OpenAI, Mistral, Z.AI, Minimax) and Anthropic return
different JSON shapes; everything downstream only sees ``NormalizedResponse``.
Normalizers never raise: malformed payloads yield empty content and zero usage.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from libs.core.models import NormalizedResponse, Usage

_ANTHROPIC_STOP_REASONS = {"max_tokens": "length", "end_turn": "stop", "stop_sequence": "stop"}


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0


def _join_text_blocks(blocks: List[Any]) -> str:
    parts: List[str] = []
    for block in blocks:
        if not isinstance(block, Mapping):
            continue
        if block.get("type") == "text" and isinstance(block.get("text"), str):
            parts.append(block["text"])
    return "".join(parts)


def _extract_choice_content(choice: Mapping[str, Any]) -> str:
    message = _as_mapping(choice.get("message"))
    delta = _as_mapping(choice.get("delta"))

    content = message.get("content")
    if isinstance(content, str) and content:
        return content

    # Reasoning models leave content empty while emitting chain-of-thought here.
    reasoning = message.get("reasoning_content")
    if isinstance(reasoning, str) and reasoning:
        return reasoning

    delta_content = delta.get("content")
    if isinstance(delta_content, str) and delta_content:
        return delta_content

    text = choice.get("text")
    if isinstance(text, str) and text:
        return text

    if isinstance(content, list):
        return _join_text_blocks(content)

    for key, value in message.items():
        if key == "role":
            continue
        if isinstance(value, str) and value:
            return value
    return ""


def normalize_openai_response(raw: Any) -> NormalizedResponse:
    data = _as_mapping(raw)
    choices = data.get("choices")
    content = ""
    finish_reason: Optional[str] = None
    if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
        content = _extract_choice_content(choices[0])
        reason = choices[0].get("finish_reason")
        finish_reason = reason if isinstance(reason, str) else None
    usage = _as_mapping(data.get("usage"))
    return NormalizedResponse(
        content=content,
        usage=Usage(
            prompt_tokens=_as_int(usage.get("prompt_tokens")),
            completion_tokens=_as_int(usage.get("completion_tokens")),
            total_tokens=_as_int(usage.get("total_tokens")),
        ),
        finish_reason=finish_reason,
    )


def normalize_anthropic_response(raw: Any) -> NormalizedResponse:
    data = _as_mapping(raw)
    blocks = data.get("content")
    content = _join_text_blocks(blocks) if isinstance(blocks, list) else ""
    usage = _as_mapping(data.get("usage"))
    prompt_tokens = usage.get("input_tokens")
    if prompt_tokens is None:
        prompt_tokens = usage.get("prompt_tokens")
    completion_tokens = usage.get("output_tokens")
    if completion_tokens is None:
        completion_tokens = usage.get("completion_tokens")
    prompt = _as_int(prompt_tokens)
    completion = _as_int(completion_tokens)
    stop_reason = data.get("stop_reason")
    finish_reason = None
    if isinstance(stop_reason, str):
        finish_reason = _ANTHROPIC_STOP_REASONS.get(stop_reason, stop_reason)
    return NormalizedResponse(
        content=content,
        usage=Usage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
        ),
        finish_reason=finish_reason,
    )


def is_anthropic_payload(raw: Any) -> bool:
    data = _as_mapping(raw)
    return isinstance(data.get("content"), list) and data.get("choices") is None


def normalize_any_response(raw: Any) -> NormalizedResponse:
    if is_anthropic_payload(raw):
        return normalize_anthropic_response(raw)
    return normalize_openai_response(raw)


def usage_summary(response: NormalizedResponse) -> Dict[str, int]:
    return {
        "input": response.usage.prompt_tokens,
        "output": response.usage.completion_tokens,
        "total": response.usage.total_tokens,
    }
