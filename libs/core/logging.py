from __future__ import annotations

import logging
from typing import Any, Dict

import structlog


def redact_event(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # Imported lazily: telemetry logs through this module.
    from libs.core.telemetry import redact_secrets

    event = event_dict.pop("event", None)
    redacted = redact_secrets(event_dict)
    if event is not None:
        redacted["event"] = event
    return redacted


def configure_logging(service_name: str) -> None:
    logging.basicConfig(level=logging.INFO)
    structlog.configure(
        processors=[
            redact_event,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
    logger = structlog.get_logger(service=service_name)
    logger.info("logging_configured")


def get_logger(service_name: str) -> structlog.BoundLogger:
    return structlog.get_logger(service=service_name)
