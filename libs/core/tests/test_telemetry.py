from structlog.testing import capture_logs

from libs.core import logging as core_logging
from libs.core import telemetry


def test_redact_secrets_matches_key_names_case_insensitively():
    redacted = telemetry.redact_secrets(
        {
            "apiKey": "sk-1",
            "Authorization_Token": "t",
            "client_secret": 42,
            "model": "gpt-4o",
        }
    )
    assert redacted == {
        "apiKey": "[redacted]",
        "Authorization_Token": "[redacted]",
        "client_secret": "[redacted]",
        "model": "gpt-4o",
    }


def test_redact_secrets_walks_nested_structures():
    redacted = telemetry.redact_secrets(
        {"request": {"headers": {"x-api-key": "abc"}}, "attempts": [{"token": "t", "n": 1}]}
    )
    assert redacted["request"]["headers"]["x-api-key"] == "[redacted]"
    assert redacted["attempts"] == [{"token": "[redacted]", "n": 1}]


def test_build_telemetry_strips_prompt_and_keys():
    fields = telemetry.build_telemetry(
        {"prompt": "secret plans", "api_key": "sk", "operation": "generate_section", "usage": {"total": 3}}
    )
    assert fields == {"operation": "generate_section", "usage": {"total": 3}}


def test_telemetry_is_silent_under_pytest():
    assert not telemetry.should_log_telemetry()
    with capture_logs() as logs:
        telemetry.log_telemetry("info", {"operation": "generate_questions"})
    assert logs == []


def test_telemetry_levels_when_enabled(monkeypatch):
    monkeypatch.setattr(telemetry, "should_log_telemetry", lambda: True)
    with capture_logs() as logs:
        telemetry.log_telemetry("warn", {"operation": "generate_section", "success": False, "apiKey": "x"})
        telemetry.log_telemetry("info", {"operation": "generate_section", "success": True})
    assert [entry["log_level"] for entry in logs] == ["warning", "info"]
    assert logs[0]["event"] == telemetry.TELEMETRY_EVENT
    assert "apiKey" not in logs[0]


def test_logging_processor_redacts_every_event():
    event = core_logging.redact_event(
        None, "info", {"event": "token_refreshed", "access_token": "abc", "user_id": "u1"}
    )
    assert event == {"event": "token_refreshed", "access_token": "[redacted]", "user_id": "u1"}


def test_env_flag_disables_telemetry(monkeypatch):
    monkeypatch.delenv("PYTEST_CURRENT_TEST", raising=False)
    monkeypatch.setenv("SPECFORGE_ENV", "test")
    assert not telemetry.should_log_telemetry()
    monkeypatch.setenv("SPECFORGE_ENV", "production")
    assert telemetry.should_log_telemetry()
