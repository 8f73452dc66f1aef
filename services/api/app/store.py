from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from libs.core import models, phases
from libs.core.state_machine import ensure_phase_transition, ensure_stream_transition
from libs.core.errors import GenerationValidationError, NotFoundError
from libs.core.secrets import decrypt_api_key, encrypt_api_key, mask_secret
from libs.llm.credentials import resolve_system_key_id

from .models import (
    ArtifactRecord,
    LlmModelRecord,
    PhaseRecord,
    ProjectRecord,
    SystemCredentialRecord,
    UserConfigRecord,
)


def _project_from_record(record: ProjectRecord) -> models.Project:
    return models.Project(
        id=record.id,
        user_id=record.user_id,
        title=record.title,
        description=record.description,
        status=record.status,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _phase_from_record(record: PhaseRecord) -> models.Phase:
    return models.Phase(
        project_id=record.project_id,
        phase_id=record.phase_id,
        status=record.status,
        questions=[models.Question.model_validate(item) for item in record.questions or []],
        cancel_requested=bool(record.cancel_requested),
    )


def _artifact_from_record(record: ArtifactRecord) -> models.Artifact:
    return models.Artifact(
        id=record.id,
        project_id=record.project_id,
        phase_id=record.phase_id,
        type=record.type,
        title=record.title,
        content=record.content,
        preview_html=record.preview_html,
        sections=[models.ArtifactSection.model_validate(item) for item in record.sections or []],
        stream_status=record.stream_status,
        current_section=record.current_section,
        sections_completed=record.sections_completed or 0,
    )


def _model_from_record(record: LlmModelRecord) -> models.LlmModel:
    return models.LlmModel(
        id=record.id,
        provider=record.provider,
        context_tokens=record.context_tokens,
        max_output_tokens=record.max_output_tokens,
        default_max=record.default_max,
        enabled=bool(record.enabled),
    )


class SqlGenerationStore:
    """SQLAlchemy persistence for projects, phases, artifacts and LLM settings.

    API keys are stored Fernet-encrypted and only decrypted when the orchestrator
    asks for user or system credentials.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # Projects and phases

    def create_project(self, user_id: str, request: models.ProjectCreate) -> models.Project:
        now = datetime.utcnow()
        record = ProjectRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=request.title,
            description=request.description,
            status=models.ProjectStatus.active.value,
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        for phase_id in phases.PHASE_ORDER:
            self.db.add(
                PhaseRecord(
                    id=str(uuid.uuid4()),
                    project_id=record.id,
                    phase_id=phase_id,
                    status=models.PhaseStatus.pending.value,
                    questions=[],
                    cancel_requested=False,
                    updated_at=now,
                )
            )
        self.db.commit()
        self.db.refresh(record)
        return _project_from_record(record)

    def get_project(self, project_id: str) -> Optional[models.Project]:
        record = self.db.get(ProjectRecord, project_id)
        return _project_from_record(record) if record else None

    def _phase_record(self, project_id: str, phase_id: str) -> Optional[PhaseRecord]:
        return (
            self.db.query(PhaseRecord)
            .filter(PhaseRecord.project_id == project_id, PhaseRecord.phase_id == phase_id)
            .first()
        )

    def _require_phase_record(self, project_id: str, phase_id: str) -> PhaseRecord:
        record = self._phase_record(project_id, phase_id)
        if record is None:
            raise NotFoundError("Phase not found")
        return record

    def get_phase(self, project_id: str, phase_id: str) -> Optional[models.Phase]:
        record = self._phase_record(project_id, phase_id)
        return _phase_from_record(record) if record else None

    def update_phase_questions(
        self, project_id: str, phase_id: str, questions: List[models.Question]
    ) -> None:
        record = self._require_phase_record(project_id, phase_id)
        record.questions = [item.model_dump(mode="json") for item in questions]
        record.updated_at = datetime.utcnow()
        self.db.commit()

    def update_phase_status(
        self, project_id: str, phase_id: str, status: models.PhaseStatus
    ) -> None:
        record = self._require_phase_record(project_id, phase_id)
        ensure_phase_transition(models.PhaseStatus(record.status), status)
        record.status = models.PhaseStatus(status).value
        record.updated_at = datetime.utcnow()
        self.db.commit()

    def set_cancel_requested(self, project_id: str, phase_id: str, value: bool) -> None:
        record = self._require_phase_record(project_id, phase_id)
        record.cancel_requested = value
        self.db.commit()

    def is_cancel_requested(self, project_id: str, phase_id: str) -> bool:
        record = self._phase_record(project_id, phase_id)
        if record is None:
            return False
        # Another request may have flagged the phase since this session loaded it.
        self.db.refresh(record)
        return bool(record.cancel_requested)

    # Artifacts

    def _artifact_record(self, project_id: str, phase_id: str) -> Optional[ArtifactRecord]:
        return (
            self.db.query(ArtifactRecord)
            .filter(ArtifactRecord.project_id == project_id, ArtifactRecord.phase_id == phase_id)
            .first()
        )

    def replace_artifact(self, artifact: models.ArtifactCreate) -> str:
        existing = self._artifact_record(artifact.project_id, artifact.phase_id)
        if existing is not None:
            self.db.delete(existing)
        now = datetime.utcnow()
        record = ArtifactRecord(
            id=str(uuid.uuid4()),
            project_id=artifact.project_id,
            phase_id=artifact.phase_id,
            type=artifact.type,
            title=artifact.title,
            content=artifact.content,
            preview_html=artifact.preview_html,
            sections=[item.model_dump() for item in artifact.sections],
            stream_status=None,
            current_section=None,
            sections_completed=len(artifact.sections),
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        self.db.commit()
        return record.id

    def append_artifact_section(
        self,
        project_id: str,
        phase_id: str,
        *,
        artifact_type: str,
        title: str,
        content: str,
        preview_html: str,
        section: models.ArtifactSection,
        reset: bool,
    ) -> str:
        now = datetime.utcnow()
        record = self._artifact_record(project_id, phase_id)
        if record is None:
            record = ArtifactRecord(
                id=str(uuid.uuid4()),
                project_id=project_id,
                phase_id=phase_id,
                created_at=now,
            )
            self.db.add(record)
            reset = True
        if record.stream_status:
            ensure_stream_transition(
                models.StreamStatus(record.stream_status), models.StreamStatus.streaming
            )
        sections = [] if reset else list(record.sections or [])
        sections.append(section.model_dump())
        record.type = artifact_type
        record.title = title
        record.content = content
        record.preview_html = preview_html
        record.sections = sections
        record.stream_status = models.StreamStatus.streaming.value
        record.current_section = section.name
        record.sections_completed = len(sections)
        record.updated_at = now
        self.db.commit()
        return record.id

    def set_artifact_stream_status(
        self,
        artifact_id: str,
        status: models.StreamStatus,
        current_section: Optional[str] = None,
    ) -> None:
        record = self.db.get(ArtifactRecord, artifact_id)
        if record is None:
            raise NotFoundError("Artifact not found")
        if record.stream_status:
            ensure_stream_transition(models.StreamStatus(record.stream_status), status)
        record.stream_status = models.StreamStatus(status).value
        record.current_section = current_section
        record.updated_at = datetime.utcnow()
        self.db.commit()

    def get_artifact(self, project_id: str, phase_id: str) -> Optional[models.Artifact]:
        record = self._artifact_record(project_id, phase_id)
        return _artifact_from_record(record) if record else None

    def list_artifacts(self, project_id: str) -> List[models.Artifact]:
        records = (
            self.db.query(ArtifactRecord)
            .filter(ArtifactRecord.project_id == project_id)
            .order_by(ArtifactRecord.created_at.asc())
            .all()
        )
        return [_artifact_from_record(record) for record in records]

    # LLM settings

    def get_user_config(self, user_id: str) -> Optional[models.UserConfig]:
        record = self.db.get(UserConfigRecord, user_id)
        if record is None:
            return None
        return models.UserConfig(
            user_id=record.user_id,
            provider=record.provider or "",
            api_key=decrypt_api_key(record.api_key_encrypted) or None,
            default_model=record.default_model or "",
            use_system=bool(record.use_system),
            system_key_id=record.system_key_id,
            zai_endpoint_type=record.zai_endpoint_type,
            zai_is_china=record.zai_is_china,
        )

    def save_user_config(self, user_id: str, request: models.UserConfigUpdate) -> models.UserConfig:
        record = self.db.get(UserConfigRecord, user_id)
        if record is None:
            record = UserConfigRecord(user_id=user_id)
            self.db.add(record)
        record.provider = request.provider
        if request.use_system:
            record.api_key_encrypted = None
        elif request.api_key is not None:
            record.api_key_encrypted = encrypt_api_key(request.api_key) if request.api_key.strip() else None
        record.default_model = request.default_model
        record.use_system = request.use_system
        record.system_key_id = resolve_system_key_id(
            request.use_system, request.provider, request.system_key_id
        )
        record.zai_endpoint_type = (
            request.zai_endpoint_type.value if request.zai_endpoint_type else None
        )
        record.zai_is_china = request.zai_is_china
        record.updated_at = datetime.utcnow()
        self.db.commit()
        config = self.get_user_config(user_id)
        assert config is not None
        return config

    def get_system_credentials(self) -> Dict[str, models.SystemCredential]:
        records = (
            self.db.query(SystemCredentialRecord)
            .filter(SystemCredentialRecord.is_enabled.is_(True))
            .order_by(SystemCredentialRecord.created_at.asc())
            .all()
        )
        return {
            record.provider: models.SystemCredential(
                provider=record.provider,
                api_key=decrypt_api_key(record.api_key_encrypted),
                is_enabled=bool(record.is_enabled),
                zai_endpoint_type=record.zai_endpoint_type,
                zai_is_china=record.zai_is_china,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
            for record in records
        }

    def set_system_credential(
        self, provider: str, request: models.SystemCredentialUpdate
    ) -> Dict[str, Any]:
        now = datetime.utcnow()
        record = self.db.get(SystemCredentialRecord, provider)
        if record is None:
            if not request.api_key:
                raise GenerationValidationError("api_key is required")
            record = SystemCredentialRecord(provider=provider, created_at=now)
            self.db.add(record)
        if request.api_key:
            record.api_key_encrypted = encrypt_api_key(request.api_key)
        record.is_enabled = request.is_enabled
        record.zai_endpoint_type = (
            request.zai_endpoint_type.value if request.zai_endpoint_type else None
        )
        record.zai_is_china = request.zai_is_china
        record.updated_at = now
        self.db.commit()
        return {
            "provider": record.provider,
            "is_enabled": record.is_enabled,
            "zai_endpoint_type": record.zai_endpoint_type,
            "zai_is_china": record.zai_is_china,
            "api_key": mask_secret(decrypt_api_key(record.api_key_encrypted)),
            "updated_at": record.updated_at.isoformat(),
        }

    def delete_system_credential(self, provider: str) -> None:
        record = self.db.get(SystemCredentialRecord, provider)
        if record is None:
            raise NotFoundError("System credential not found")
        self.db.delete(record)
        self.db.commit()

    def list_enabled_models(self) -> List[models.LlmModel]:
        records = (
            self.db.query(LlmModelRecord)
            .filter(LlmModelRecord.enabled.is_(True))
            .order_by(LlmModelRecord.created_at.asc())
            .all()
        )
        return [_model_from_record(record) for record in records]

    def upsert_model(self, model_id: str, request: models.LlmModelUpdate) -> models.LlmModel:
        model = models.LlmModel(id=model_id, **request.model_dump())
        record = self.db.get(LlmModelRecord, model_id)
        if record is None:
            record = LlmModelRecord(id=model_id, created_at=datetime.utcnow())
            self.db.add(record)
        record.provider = model.provider
        record.context_tokens = model.context_tokens
        record.max_output_tokens = model.max_output_tokens
        record.default_max = model.default_max
        record.enabled = model.enabled
        self.db.commit()
        return model
