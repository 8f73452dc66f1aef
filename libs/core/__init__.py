__all__ = [
    "models",
    "errors",
    "config",
    "secrets",
    "phases",
    "prompts",
    "state_machine",
    "orchestrator",
    "telemetry",
    "preview",
    "export",
    "logging",
]
