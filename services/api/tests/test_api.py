import io
import json
import os
import zipfile

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["SPECFORGE_ENCRYPTION_KEY"] = "api-test-passphrase"

from services.api.app import main  # noqa: E402
from services.api.app.database import Base, SessionLocal, engine
from services.api.app.models import UserConfigRecord
from services.api.app.store import SqlGenerationStore
from libs.core import models
from libs.core.config import GenerationSettings, RateLimitSettings
from libs.core.errors import SecretsConfigError
from libs.core.orchestrator import GenerationOrchestrator, GenerationLocks
from libs.llm.providers import LLMProvider


Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

QUESTIONS = {
    "questions": [
        {"text": "What is the primary goal?", "required": True},
        {"text": "Who are the target users?", "required": False},
        {"text": "Which features matter most?", "required": False},
        {"text": "Any compliance constraints?", "required": False},
        {"text": "What does success look like?", "required": False},
    ]
}


class FakeProvider(LLMProvider):
    name = "fake"

    async def complete(self, prompt, *, model, max_tokens=None, temperature=None):
        if "clarifying questions" in prompt:
            return models.NormalizedResponse(content=json.dumps(QUESTIONS), finish_reason="stop")
        if "helping answer questions" in prompt:
            return models.NormalizedResponse(content="Independent makers", finish_reason="stop")
        return models.NormalizedResponse(
            content="Sellers list handmade widgets and manage orders from one dashboard with payouts.",
            finish_reason="stop",
        )

    def is_available(self):
        return True


def _orchestrator(store: SqlGenerationStore = Depends(main.get_store)) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        store,
        settings=GenerationSettings(retries=0),
        client_factory=lambda credentials: FakeProvider() if credentials else None,
        locks=GenerationLocks(),
        rate_limiter=main.RATE_LIMITER,
    )


main.app.dependency_overrides[main.get_orchestrator] = _orchestrator

client = TestClient(main.app)

USER = {"X-User-Id": "user-1"}
OTHER = {"X-User-Id": "user-2"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


def _create_project(headers=USER) -> str:
    response = client.post(
        "/projects",
        json={"title": "Acme", "description": "A marketplace for handmade widgets"},
        headers=headers,
    )
    assert response.status_code == 200
    return response.json()["id"]


def test_healthz():
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_project_requires_identity():
    response = client.post("/projects", json={"title": "Acme", "description": "Widgets"})
    assert response.status_code == 401
    assert response.json() == {"detail": "Unauthenticated"}


def test_project_ownership():
    project_id = _create_project()
    assert client.get(f"/projects/{project_id}", headers=USER).json()["title"] == "Acme"
    assert client.get(f"/projects/{project_id}", headers=OTHER).status_code == 403
    assert client.get("/projects/missing", headers=USER).status_code == 404
    phase = client.get(f"/projects/{project_id}/phases/handoff", headers=USER).json()
    assert phase["status"] == "pending"


def test_llm_config_hides_key_and_encrypts_at_rest():
    response = client.put(
        "/settings/llm-config",
        json={"provider": "openai", "api_key": "sk-test-1234", "default_model": "gpt-4o"},
        headers={"X-User-Id": "config-user"},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["has_api_key"] is True
    assert "api_key" not in payload
    assert client.get("/settings/llm-config", headers={"X-User-Id": "config-user"}).json() == payload
    with SessionLocal() as db:
        record = db.get(UserConfigRecord, "config-user")
        assert record.api_key_encrypted
        assert "sk-test-1234" not in record.api_key_encrypted


def test_llm_config_rejects_mismatched_model():
    response = client.put(
        "/settings/llm-config",
        json={"provider": "anthropic", "api_key": "k", "default_model": "gpt-4o"},
        headers={"X-User-Id": "config-user-2"},
    )
    assert response.status_code == 400


def test_generation_without_credentials_is_rejected():
    project_id = _create_project({"X-User-Id": "no-key-user"})
    response = client.post(
        f"/projects/{project_id}/phases/handoff/generate", headers={"X-User-Id": "no-key-user"}
    )
    assert response.status_code == 400
    assert "configure your API credentials" in response.json()["detail"]


def test_question_and_generation_flow():
    client.put(
        "/settings/llm-config",
        json={"provider": "openai", "api_key": "sk-flow", "default_model": "gpt-4o"},
        headers=USER,
    )
    project_id = _create_project()
    base = f"/projects/{project_id}/phases/brief"

    questions = client.post(f"{base}/questions", headers=USER).json()
    assert [item["id"] for item in questions] == [f"brief-q{n}" for n in range(1, 6)]

    blocked = client.post(f"{base}/generate", headers=USER)
    assert blocked.status_code == 400

    suggested = client.post(f"{base}/questions/brief-q2/answer", headers=USER).json()
    assert suggested == {"question_id": "brief-q2", "answer": "Independent makers"}

    batch = client.post(f"{base}/answers", headers=USER).json()
    assert [item["question_id"] for item in batch] == [f"brief-q{n}" for n in range(1, 6)]

    saved = client.put(
        f"{base}/questions/brief-q1", json={"answer": "Sell handmade widgets"}, headers=USER
    )
    assert saved.status_code == 200
    assert saved.json()["answer"] == "Sell handmade widgets"

    generated = client.post(f"{base}/generate", json={"model_id": "gpt-4o-mini"}, headers=USER)
    assert generated.status_code == 200
    assert generated.json()["status"] == "success"

    artifact = client.get(f"{base}/artifact", headers=USER).json()
    assert artifact["id"] == generated.json()["artifact_id"]
    assert artifact["content"].count("Acme") >= 3
    assert {section["model"] for section in artifact["sections"]} == {"gpt-4o-mini"}
    assert client.get(f"/projects/{project_id}/phases/brief", headers=USER).json()["status"] == "ready"

    streamed = client.post(f"{base}/generate/stream", headers=USER)
    assert streamed.status_code == 200
    artifact = client.get(f"{base}/artifact", headers=USER).json()
    assert artifact["stream_status"] == "complete"
    assert artifact["sections_completed"] == 3

    cancel = client.post(f"{base}/cancel", headers=USER).json()
    assert cancel == {"status": "cancel_requested", "in_progress": False}

    export = client.get(f"/projects/{project_id}/export", headers=USER)
    assert export.status_code == 200
    assert export.headers["content-type"] == "application/zip"
    with zipfile.ZipFile(io.BytesIO(export.content)) as archive:
        assert "brief/Brief - Project Brief.md" in archive.namelist()
        assert "handoff/README.md" in archive.namelist()

    assert client.get(f"/projects/{project_id}/export", headers=OTHER).status_code == 403


def test_system_credentials_require_admin():
    denied = client.put("/admin/system-credentials/mistral", json={"api_key": "m-key-9876"}, headers=USER)
    assert denied.status_code == 403

    saved = client.put(
        "/admin/system-credentials/mistral", json={"api_key": "m-key-9876"}, headers=ADMIN
    )
    assert saved.status_code == 200
    assert saved.json()["api_key"] == {"has_value": True, "last4": "9876"}

    with SessionLocal() as db:
        credentials = SqlGenerationStore(db).get_system_credentials()
        assert credentials["mistral"].api_key == "m-key-9876"

    assert client.delete("/admin/system-credentials/mistral", headers=ADMIN).status_code == 200
    assert client.delete("/admin/system-credentials/mistral", headers=ADMIN).status_code == 404


def test_system_credential_used_without_user_key():
    client.put("/admin/system-credentials/anthropic", json={"api_key": "sys-key"}, headers=ADMIN)
    headers = {"X-User-Id": "system-user"}
    project_id = _create_project(headers)
    response = client.post(f"/projects/{project_id}/phases/handoff/generate", headers=headers)
    assert response.status_code == 200
    client.delete("/admin/system-credentials/anthropic", headers=ADMIN)


def test_startup_requires_encryption_key(monkeypatch):
    with TestClient(main.app) as started:
        assert started.get("/healthz").status_code == 200
    monkeypatch.delenv("SPECFORGE_ENCRYPTION_KEY")
    with pytest.raises(SecretsConfigError, match="SPECFORGE_ENCRYPTION_KEY"):
        main._init_db()


def test_export_rate_limit_returns_429(monkeypatch):
    monkeypatch.setattr(main.RATE_LIMITER, "settings", RateLimitSettings(export_per_user=1))
    headers = {"X-User-Id": "limited-user"}
    project_id = _create_project(headers)
    assert client.get(f"/projects/{project_id}/export", headers=headers).status_code == 200
    limited = client.get(f"/projects/{project_id}/export", headers=headers)
    assert limited.status_code == 429
    assert "generate_project_zip" in limited.json()["detail"]
    assert 1 <= int(limited.headers["retry-after"]) <= 60


def test_save_batch_answers_route():
    headers = {"X-User-Id": "batch-user"}
    client.put(
        "/settings/llm-config",
        json={"provider": "openai", "api_key": "sk-batch", "default_model": "gpt-4o"},
        headers=headers,
    )
    project_id = _create_project(headers)
    base = f"/projects/{project_id}/phases/prd"
    client.post(f"{base}/questions", headers=headers)
    saved = client.put(
        f"{base}/answers",
        json=[
            {"question_id": "prd-q1", "answer": "Sellers first"},
            {"question_id": "prd-q2", "answer": ""},
        ],
        headers=headers,
    )
    assert saved.status_code == 200
    assert saved.json() == [{"question_id": "prd-q1", "answer": "Sellers first"}]
    questions = client.get(base, headers=headers).json()["questions"]
    assert questions[0]["answer"] == "Sellers first"
    assert questions[0]["ai_generated"] is True
    assert questions[1]["answer"] is None


def test_llm_models_listing_and_admin_upsert():
    models_payload = client.get("/llm-models").json()
    assert "gpt-4o" in {item["id"] for item in models_payload}

    invalid = client.put(
        "/admin/llm-models/custom-model",
        json={"provider": "openai", "context_tokens": 1000, "max_output_tokens": 2000, "default_max": 500},
        headers=ADMIN,
    )
    assert invalid.status_code == 400

    unknown = client.put(
        "/admin/llm-models/custom-model",
        json={"provider": "bogus", "context_tokens": 32000, "max_output_tokens": 8000, "default_max": 4000},
        headers=ADMIN,
    )
    assert unknown.status_code == 422

    saved = client.put(
        "/admin/llm-models/custom-model",
        json={"provider": "openai", "context_tokens": 32000, "max_output_tokens": 8000, "default_max": 4000},
        headers=ADMIN,
    )
    assert saved.status_code == 200
    listed = client.get("/llm-models").json()
    assert [item["id"] for item in listed] == ["custom-model"]
    assert listed[0]["provider_display_name"] == "OpenAI"
