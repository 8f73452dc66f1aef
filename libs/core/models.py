from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class Provider(str, Enum):
    openai = "openai"
    openrouter = "openrouter"
    deepseek = "deepseek"
    anthropic = "anthropic"
    mistral = "mistral"
    zai = "zai"
    minimax = "minimax"
    other = "other"


class ZaiEndpointType(str, Enum):
    paid = "paid"
    coding = "coding"


class PhaseStatus(str, Enum):
    pending = "pending"
    generating = "generating"
    ready = "ready"
    error = "error"


class StreamStatus(str, Enum):
    streaming = "streaming"
    complete = "complete"
    cancelled = "cancelled"
    error = "error"


class ProjectStatus(str, Enum):
    draft = "draft"
    active = "active"
    complete = "complete"


class LlmModel(BaseModel):
    id: str
    provider: str
    context_tokens: int
    max_output_tokens: int
    default_max: int
    enabled: bool = True

    @model_validator(mode="after")
    def _check_limits(self) -> "LlmModel":
        if self.max_output_tokens > self.context_tokens:
            raise ValueError("max_output_tokens must not exceed context_tokens")
        if self.default_max > self.max_output_tokens:
            raise ValueError("default_max must not exceed max_output_tokens")
        return self


class RegistryEntry(BaseModel):
    model: LlmModel
    provider: str
    display_name: str


class ProviderCredentials(BaseModel):
    provider: str
    api_key: str
    model_id: str = ""
    zai_endpoint_type: Optional[ZaiEndpointType] = None
    zai_is_china: Optional[bool] = None


class UserConfig(BaseModel):
    user_id: str
    provider: str = ""
    api_key: Optional[str] = None
    default_model: str = ""
    use_system: bool = False
    system_key_id: Optional[str] = None
    zai_endpoint_type: Optional[ZaiEndpointType] = None
    zai_is_china: Optional[bool] = None


class SystemCredential(BaseModel):
    """Decrypted view of an admin-managed provider credential."""

    provider: str
    api_key: str
    is_enabled: bool = True
    zai_endpoint_type: Optional[ZaiEndpointType] = None
    zai_is_china: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SectionPlan(BaseModel):
    name: str
    max_tokens: int
    tokens_used: Optional[int] = None
    model: Optional[str] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class NormalizedResponse(BaseModel):
    content: str = ""
    usage: Usage = Field(default_factory=Usage)
    finish_reason: Optional[str] = None


class SectionContent(BaseModel):
    name: str
    content: str


class SectionRequest(BaseModel):
    project_context: Dict[str, str]
    section_name: str
    section_instructions: Optional[str] = None
    section_questions: List[str] = Field(default_factory=list)
    previous_sections: List[SectionContent] = Field(default_factory=list)
    artifact_type: str
    model_id: str
    max_tokens: Optional[int] = None


class SectionResult(BaseModel):
    content: str
    tokens: int


class Question(BaseModel):
    id: str
    text: str
    answer: Optional[str] = None
    ai_generated: bool = False
    required: Optional[bool] = None


class Project(BaseModel):
    id: str
    user_id: str
    title: str
    description: str
    status: ProjectStatus = ProjectStatus.active
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Phase(BaseModel):
    project_id: str
    phase_id: str
    status: PhaseStatus = PhaseStatus.pending
    questions: List[Question] = Field(default_factory=list)
    cancel_requested: bool = False


class ArtifactSection(BaseModel):
    name: str
    tokens: int
    model: str


class ArtifactCreate(BaseModel):
    project_id: str
    phase_id: str
    type: str
    title: str
    content: str
    preview_html: str
    sections: List[ArtifactSection] = Field(default_factory=list)


class Artifact(ArtifactCreate):
    id: str
    stream_status: Optional[StreamStatus] = None
    current_section: Optional[str] = None
    sections_completed: int = 0


class QuestionAnswer(BaseModel):
    question_id: str
    answer: str


class GenerationResult(BaseModel):
    artifact_id: str
    status: str = "success"
    continued_sections: int = 0


class ProjectCreate(BaseModel):
    title: str
    description: str


class UserConfigUpdate(BaseModel):
    provider: str
    api_key: Optional[str] = None
    default_model: str = ""
    use_system: bool = False
    system_key_id: Optional[str] = None
    zai_endpoint_type: Optional[ZaiEndpointType] = None
    zai_is_china: Optional[bool] = None


class SystemCredentialUpdate(BaseModel):
    api_key: Optional[str] = None
    is_enabled: bool = True
    zai_endpoint_type: Optional[ZaiEndpointType] = None
    zai_is_china: Optional[bool] = None


class AnswerUpdate(BaseModel):
    answer: str
    ai_generated: bool = False


class LlmModelUpdate(BaseModel):
    provider: str
    context_tokens: int
    max_output_tokens: int
    default_max: int
    enabled: bool = True

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        return Provider(value.strip().lower()).value


class GeneratePhaseRequest(BaseModel):
    model_id: Optional[str] = None

