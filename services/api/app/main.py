from __future__ import annotations

import math
import os
import time
from typing import Any, Dict, Generator, List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, make_asgi_app
from sqlalchemy.orm import Session

from libs.core import logging as core_logging, models
from libs.core.errors import (
    ForbiddenError,
    GenerationValidationError,
    NotFoundError,
    RateLimitedError,
    SpecForgeError,
    UnauthenticatedError,
)
from libs.core.orchestrator import GenerationOrchestrator
from libs.core.rate_limits import RateLimiter
from libs.core.secrets import require_encryption_key
from libs.llm.credentials import to_public_user_config
from libs.llm.registry import (
    get_enabled_models,
    get_model_by_id,
    get_model_display_name,
    get_provider_display_name,
    validate_provider_model_match,
)

from .database import Base, SessionLocal, engine
from .store import SqlGenerationStore

core_logging.configure_logging("api")
logger = core_logging.get_logger("api")

app = FastAPI(title="SpecForge API")

cors_origins = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

ADMIN_ROLE = os.getenv("SPECFORGE_ADMIN_ROLE", "admin")

generations_total = Counter(
    "specforge_generations_total", "Phase generations by outcome", ["phase", "mode", "outcome"]
)
generation_duration_seconds = Histogram(
    "specforge_generation_duration_seconds", "Phase generation duration", ["phase", "mode"]
)
projects_created_total = Counter("specforge_projects_created_total", "Projects created")

RATE_LIMITER = RateLimiter()


@app.on_event("startup")
def _init_db() -> None:
    # Stored credentials cannot be read or written without the key.
    require_encryption_key()
    Base.metadata.create_all(bind=engine)


@app.exception_handler(SpecForgeError)
async def _handle_specforge_error(request: Request, exc: SpecForgeError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.detail)
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after_s)))}
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_store(db: Session = Depends(get_db)) -> SqlGenerationStore:
    return SqlGenerationStore(db)


def get_orchestrator(store: SqlGenerationStore = Depends(get_store)) -> GenerationOrchestrator:
    return GenerationOrchestrator(store, rate_limiter=RATE_LIMITER)


def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_user_id or None


def require_user_id(user_id: Optional[str] = Depends(current_user_id)) -> str:
    if not user_id:
        raise UnauthenticatedError()
    return user_id


def require_admin(
    user_id: str = Depends(require_user_id),
    x_user_role: Optional[str] = Header(default=None),
) -> str:
    if x_user_role != ADMIN_ROLE:
        raise ForbiddenError("Admin access required")
    return user_id


@app.get("/healthz")
def healthz() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/projects", response_model=models.Project)
def create_project(
    request: models.ProjectCreate,
    user_id: str = Depends(require_user_id),
    store: SqlGenerationStore = Depends(get_store),
) -> models.Project:
    if not request.title.strip():
        raise GenerationValidationError("title is required")
    project = store.create_project(user_id, request)
    projects_created_total.inc()
    logger.info("project_created", project_id=project.id, user_id=user_id)
    return project


@app.get("/projects/{project_id}", response_model=models.Project)
def get_project(
    project_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> models.Project:
    return orchestrator.authorize_project(user_id, project_id)


@app.get("/projects/{project_id}/phases/{phase_id}", response_model=models.Phase)
def get_phase(
    project_id: str,
    phase_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> models.Phase:
    orchestrator.authorize_project(user_id, project_id)
    phase = orchestrator.store.get_phase(project_id, phase_id)
    if phase is None:
        raise NotFoundError("Phase not found")
    return phase


@app.post(
    "/projects/{project_id}/phases/{phase_id}/questions", response_model=List[models.Question]
)
async def generate_questions(
    project_id: str,
    phase_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> List[models.Question]:
    return await orchestrator.generate_questions(user_id, project_id, phase_id)


@app.post("/projects/{project_id}/phases/{phase_id}/questions/{question_id}/answer")
async def generate_question_answer(
    project_id: str,
    phase_id: str,
    question_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, str]:
    answer = await orchestrator.generate_question_answer(user_id, project_id, phase_id, question_id)
    return {"question_id": question_id, "answer": answer}


@app.post(
    "/projects/{project_id}/phases/{phase_id}/answers",
    response_model=List[models.QuestionAnswer],
)
async def generate_all_question_answers(
    project_id: str,
    phase_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> List[Dict[str, str]]:
    return await orchestrator.generate_all_question_answers(user_id, project_id, phase_id)


@app.put(
    "/projects/{project_id}/phases/{phase_id}/answers",
    response_model=List[models.QuestionAnswer],
)
def save_batch_answers(
    project_id: str,
    phase_id: str,
    request: List[models.QuestionAnswer],
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> List[Dict[str, str]]:
    return orchestrator.save_batch_answers(user_id, project_id, phase_id, request)


@app.put(
    "/projects/{project_id}/phases/{phase_id}/questions/{question_id}",
    response_model=models.Question,
)
def save_answer(
    project_id: str,
    phase_id: str,
    question_id: str,
    request: models.AnswerUpdate,
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> models.Question:
    return orchestrator.save_answer(
        user_id, project_id, phase_id, question_id, request.answer, request.ai_generated
    )


async def _run_generation(
    mode: str,
    phase_id: str,
    orchestrator_call: Any,
) -> models.GenerationResult:
    started = time.monotonic()
    outcome = "error"
    try:
        result = await orchestrator_call
        outcome = "success"
        return result
    except SpecForgeError as exc:
        outcome = exc.__class__.__name__
        raise
    finally:
        generations_total.labels(phase=phase_id, mode=mode, outcome=outcome).inc()
        generation_duration_seconds.labels(phase=phase_id, mode=mode).observe(
            time.monotonic() - started
        )


@app.post(
    "/projects/{project_id}/phases/{phase_id}/generate", response_model=models.GenerationResult
)
async def generate_phase(
    project_id: str,
    phase_id: str,
    request: Optional[models.GeneratePhaseRequest] = None,
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> models.GenerationResult:
    model_id = request.model_id if request else None
    return await _run_generation(
        "full",
        phase_id,
        orchestrator.generate_phase(user_id, project_id, phase_id, model_id),
    )


@app.post(
    "/projects/{project_id}/phases/{phase_id}/generate/stream",
    response_model=models.GenerationResult,
)
async def generate_phase_streaming(
    project_id: str,
    phase_id: str,
    request: Optional[models.GeneratePhaseRequest] = None,
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> models.GenerationResult:
    model_id = request.model_id if request else None
    return await _run_generation(
        "stream",
        phase_id,
        orchestrator.generate_phase_streaming(user_id, project_id, phase_id, model_id),
    )


@app.post("/projects/{project_id}/phases/{phase_id}/cancel")
def cancel_generation(
    project_id: str,
    phase_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    in_progress = orchestrator.cancel_generation(user_id, project_id, phase_id)
    return {"status": "cancel_requested", "in_progress": in_progress}


@app.get("/projects/{project_id}/phases/{phase_id}/artifact", response_model=models.Artifact)
def get_artifact(
    project_id: str,
    phase_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> models.Artifact:
    orchestrator.authorize_project(user_id, project_id)
    artifact = orchestrator.store.get_artifact(project_id, phase_id)
    if artifact is None:
        raise NotFoundError("Artifact not found")
    return artifact


@app.get("/projects/{project_id}/export")
def export_project(
    project_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> Response:
    payload = orchestrator.export_project(user_id, project_id)
    return Response(
        content=payload,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="project-{project_id}.zip"'},
    )


@app.get("/settings/llm-config")
def get_llm_config(
    user_id: str = Depends(require_user_id),
    store: SqlGenerationStore = Depends(get_store),
) -> Optional[Dict[str, Any]]:
    return to_public_user_config(store.get_user_config(user_id))


@app.put("/settings/llm-config")
def save_llm_config(
    request: models.UserConfigUpdate,
    user_id: str = Depends(require_user_id),
    store: SqlGenerationStore = Depends(get_store),
) -> Optional[Dict[str, Any]]:
    if request.default_model and get_model_by_id(request.default_model) is not None:
        ok, reason = validate_provider_model_match(request.provider, request.default_model)
        if not ok:
            raise GenerationValidationError(reason or "Invalid model for provider")
    config = store.save_user_config(user_id, request)
    logger.info("llm_config_saved", user_id=user_id, provider=config.provider, use_system=config.use_system)
    return to_public_user_config(config)


@app.get("/llm-models")
def list_llm_models(store: SqlGenerationStore = Depends(get_store)) -> List[Dict[str, Any]]:
    db_models = store.list_enabled_models()
    if db_models:
        return [
            {
                **model.model_dump(),
                "display_name": get_model_display_name(model.id),
                "provider_display_name": get_provider_display_name(model.provider),
            }
            for model in db_models
        ]
    return [
        {
            **entry.model.model_dump(),
            "display_name": entry.display_name,
            "provider_display_name": get_provider_display_name(entry.provider),
        }
        for entry in get_enabled_models()
    ]


@app.put("/admin/llm-models/{model_id}", response_model=models.LlmModel)
def upsert_llm_model(
    model_id: str,
    request: models.LlmModelUpdate,
    admin_id: str = Depends(require_admin),
    store: SqlGenerationStore = Depends(get_store),
) -> models.LlmModel:
    try:
        model = store.upsert_model(model_id, request)
    except ValueError as exc:
        raise GenerationValidationError(str(exc)) from exc
    logger.info("llm_model_saved", model_id=model_id, admin_id=admin_id, enabled=model.enabled)
    return model


@app.put("/admin/system-credentials/{provider}")
def set_system_credential(
    provider: str,
    request: models.SystemCredentialUpdate,
    admin_id: str = Depends(require_admin),
    store: SqlGenerationStore = Depends(get_store),
) -> Dict[str, Any]:
    saved = store.set_system_credential(provider, request)
    logger.info("system_credential_saved", provider=provider, admin_id=admin_id)
    return saved


@app.delete("/admin/system-credentials/{provider}")
def delete_system_credential(
    provider: str,
    admin_id: str = Depends(require_admin),
    store: SqlGenerationStore = Depends(get_store),
) -> Dict[str, str]:
    store.delete_system_credential(provider)
    logger.info("system_credential_deleted", provider=provider, admin_id=admin_id)
    return {"status": "deleted"}
