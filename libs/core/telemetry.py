from __future__ import annotations

import os
import re
from typing import Any, Dict, Mapping

from libs.core import logging as core_logging

TELEMETRY_EVENT = "llm.telemetry"
REDACTED = "[redacted]"
_SECRET_KEY_PATTERN = re.compile(r"key|token|secret", re.IGNORECASE)
_STRIPPED_FIELDS = ("prompt", "api_key", "apiKey")


def is_secret_key(key: str) -> bool:
    return bool(_SECRET_KEY_PATTERN.search(key))


def _redact_value(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_redact_value(item) for item in value]
    if isinstance(value, Mapping):
        return redact_secrets(value)
    return value


def redact_secrets(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``payload`` with secret-shaped keys replaced by ``[redacted]``.

    Keys are matched case-insensitively on the substrings ``key``, ``token`` and
    ``secret``; the replacement happens regardless of the value's type. Nested
    mappings and sequences are walked recursively.
    """
    output: Dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(key, str) and is_secret_key(key):
            output[key] = REDACTED
            continue
        output[key] = _redact_value(value)
    return output


def build_telemetry(payload: Mapping[str, Any]) -> Dict[str, Any]:
    rest = {key: value for key, value in payload.items() if key not in _STRIPPED_FIELDS}
    return redact_secrets(rest)


def should_log_telemetry() -> bool:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    env = (os.getenv("SPECFORGE_ENV") or "").strip().lower()
    return env != "test"


def log_telemetry(level: str, payload: Mapping[str, Any]) -> None:
    if not should_log_telemetry():
        return
    logger = core_logging.get_logger("llm")
    fields = build_telemetry(payload)
    if level in {"warn", "warning", "error"}:
        logger.warning(TELEMETRY_EVENT, **fields)
    else:
        logger.info(TELEMETRY_EVENT, **fields)
