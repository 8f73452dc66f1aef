from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel


def _parse_optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _parse_optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class GenerationSettings(BaseModel):
    timeout_s: float = 120.0
    openai_timeout_s: Optional[float] = None
    retries: int = 3
    retry_min_delay_ms: int = 500
    retry_max_delay_ms: int = 4000
    continuation_max_turns: int = 3
    section_safety_ratio: float = 0.5
    answer_max_tokens: int = 2000
    self_critique: bool = False
    generation_deadline_s: Optional[float] = None

    @classmethod
    def from_env(cls) -> "GenerationSettings":
        timeout = _parse_optional_float(os.getenv("LLM_TIMEOUT_S"))
        retries = _parse_optional_int(os.getenv("LLM_RETRIES"))
        min_delay = _parse_optional_int(os.getenv("LLM_RETRY_MIN_DELAY_MS"))
        max_delay = _parse_optional_int(os.getenv("LLM_RETRY_MAX_DELAY_MS"))
        max_turns = _parse_optional_int(os.getenv("LLM_CONTINUATION_MAX_TURNS"))
        ratio = _parse_optional_float(os.getenv("LLM_SECTION_SAFETY_RATIO"))
        answer_max = _parse_optional_int(os.getenv("LLM_ANSWER_MAX_TOKENS"))
        return cls(
            timeout_s=timeout if timeout is not None else 120.0,
            # The plain OpenAI client only gets a timeout when one is configured.
            openai_timeout_s=timeout,
            retries=retries if retries is not None else 3,
            retry_min_delay_ms=min_delay if min_delay is not None else 500,
            retry_max_delay_ms=max_delay if max_delay is not None else 4000,
            continuation_max_turns=max_turns if max_turns is not None else 3,
            section_safety_ratio=ratio if ratio is not None else 0.5,
            answer_max_tokens=answer_max if answer_max is not None else 2000,
            self_critique=_parse_bool(os.getenv("LLM_SELF_CRITIQUE")),
            generation_deadline_s=_parse_optional_float(os.getenv("LLM_GENERATION_DEADLINE_S")),
        )


class RateLimitSettings(BaseModel):
    """Requests allowed per window; 0 turns a limit off."""

    window_s: float = 60.0
    phase_per_user: int = 10
    phase_global: int = 100
    questions_per_user: int = 20
    answers_per_user: int = 30
    export_per_user: int = 10

    @classmethod
    def from_env(cls) -> "RateLimitSettings":
        defaults = cls()
        window = _parse_optional_float(os.getenv("RATE_LIMIT_WINDOW_S"))
        values = {
            field: _parse_optional_int(os.getenv(f"RATE_LIMIT_{field.upper()}"))
            for field in (
                "phase_per_user",
                "phase_global",
                "questions_per_user",
                "answers_per_user",
                "export_per_user",
            )
        }
        return cls(
            window_s=window if window is not None else defaults.window_s,
            **{
                field: value if value is not None else getattr(defaults, field)
                for field, value in values.items()
            },
        )


def encryption_key() -> Optional[str]:
    value = os.getenv("SPECFORGE_ENCRYPTION_KEY", "").strip()
    return value or None
