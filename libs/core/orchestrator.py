from __future__ import annotations

import asyncio
import json
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

from jsonschema import Draft202012Validator
from pydantic import ValidationError

from libs.llm.chunking import (
    estimate_token_count,
    get_section_plan,
    merge_section_content,
    plan_sections,
)
from libs.llm.client_factory import create_llm_client
from libs.llm.continuation import continue_if_truncated
from libs.llm.credentials import resolve_credentials
from libs.llm.normalizer import usage_summary
from libs.llm.providers import LLMProvider
from libs.llm.registry import (
    get_fallback_model,
    get_model_by_id,
    select_enabled_models,
    validate_model_for_artifact,
)
from libs.llm.retry import retry_with_backoff

from . import logging as core_logging
from . import phases, prompts
from .config import GenerationSettings
from .errors import (
    CredentialsUnavailableError,
    ForbiddenError,
    GenerationCancelledError,
    GenerationConflictError,
    GenerationValidationError,
    NotFoundError,
    SecretsConfigError,
    SpecForgeError,
    UnauthenticatedError,
)
from .export import export_project_zip
from .models import (
    Artifact,
    ArtifactCreate,
    ArtifactSection,
    GenerationResult,
    LlmModel,
    NormalizedResponse,
    Phase,
    PhaseStatus,
    Project,
    ProviderCredentials,
    Question,
    QuestionAnswer,
    SectionContent,
    SectionPlan,
    StreamStatus,
    SystemCredential,
    UserConfig,
)
from .preview import render_preview_html
from .rate_limits import GLOBAL_KEY, RateLimiter
from .telemetry import log_telemetry

logger = core_logging.get_logger("orchestrator")

SECTION_TEMPERATURE = 0.7
ANSWER_TEMPERATURE = 0.7
QUESTION_TEMPERATURE = 0.7
CRITIQUE_TEMPERATURE = 0.3
CRITIQUE_MAX_TOKENS = 4000
CRITIQUE_APPROVED = "APPROVED"
MIN_SECTION_CHARS = 80
_TERMINAL_ENDINGS = (".", "!", "?", ":", ";", ")", "`", "|", "*", "_", '"', "'")

QUESTIONS_SCHEMA = {
    "type": "object",
    "required": ["questions"],
    "properties": {"questions": {"type": "array"}},
}
_QUESTIONS_VALIDATOR = Draft202012Validator(QUESTIONS_SCHEMA)


class GenerationStore(Protocol):
    def get_project(self, project_id: str) -> Optional[Project]: ...

    def get_phase(self, project_id: str, phase_id: str) -> Optional[Phase]: ...

    def update_phase_questions(
        self, project_id: str, phase_id: str, questions: List[Question]
    ) -> None: ...

    def update_phase_status(self, project_id: str, phase_id: str, status: PhaseStatus) -> None: ...

    def get_user_config(self, user_id: str) -> Optional[UserConfig]: ...

    def get_system_credentials(self) -> Dict[str, SystemCredential]: ...

    def list_enabled_models(self) -> List[LlmModel]: ...

    def replace_artifact(self, artifact: ArtifactCreate) -> str: ...

    def append_artifact_section(
        self,
        project_id: str,
        phase_id: str,
        *,
        artifact_type: str,
        title: str,
        content: str,
        preview_html: str,
        section: ArtifactSection,
        reset: bool,
    ) -> str: ...

    def set_artifact_stream_status(
        self, artifact_id: str, status: StreamStatus, current_section: Optional[str] = None
    ) -> None: ...

    def get_artifact(self, project_id: str, phase_id: str) -> Optional[Artifact]: ...

    def list_artifacts(self, project_id: str) -> List[Artifact]: ...

    def set_cancel_requested(self, project_id: str, phase_id: str, value: bool) -> None: ...

    def is_cancel_requested(self, project_id: str, phase_id: str) -> bool: ...


ClientFactory = Callable[[Optional[ProviderCredentials]], Optional[LLMProvider]]
SectionCallback = Callable[[int, SectionContent, List[SectionContent]], Awaitable[None]]


@dataclass
class AiFailure:
    reason: str


@dataclass
class GenerationContext:
    credentials: Optional[ProviderCredentials]
    model: LlmModel
    client: Optional[LLMProvider]


class GenerationLocks:
    """One in-process lock per (project, phase); a busy phase rejects new generations."""

    def __init__(self) -> None:
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def is_locked(self, project_id: str, phase_id: str) -> bool:
        lock = self._locks.get((project_id, phase_id))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, project_id: str, phase_id: str) -> AsyncIterator[None]:
        key = (project_id, phase_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            raise GenerationConflictError("Generation already in progress for this phase")
        try:
            async with lock:
                yield
        finally:
            if not lock.locked() and self._locks.get(key) is lock:
                del self._locks[key]


DEFAULT_LOCKS = GenerationLocks()


def _coerce_required(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return value is True


def parse_questions_payload(text: str) -> List[Dict[str, Any]]:
    """Parse the ``{"questions": [...]}`` envelope permissively.

    A direct parse is tried first, then the span from the first ``{`` to the last
    ``}``. Raises ``ValueError`` when neither yields a usable list.
    """
    raw = (text or "").strip()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        start = raw.find("{")
        end = raw.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("questions_payload_not_json")
        data = json.loads(raw[start : end + 1])
    errors = sorted(_QUESTIONS_VALIDATOR.iter_errors(data), key=lambda err: list(err.path))
    if errors:
        messages = "; ".join(
            f"{'/'.join(map(str, err.path)) or '<root>'}: {err.message}" for err in errors[:5]
        )
        raise ValueError(f"questions_payload_invalid: {messages}")
    items: List[Dict[str, Any]] = []
    for item in data["questions"]:
        if not isinstance(item, dict):
            continue
        text_value = item.get("text")
        if not isinstance(text_value, str) or not text_value.strip():
            continue
        items.append({"text": text_value.strip(), "required": _coerce_required(item.get("required"))})
    return items


def repair_section(content: str, project_title: str, section_name: str) -> str:
    text = content.strip()
    label = phases.format_section_name(section_name)
    if project_title and project_title.lower() not in text.lower():
        intro = f"This section covers {label.lower()} for {project_title}."
        text = f"{intro}\n\n{text}" if text else intro
    if len(text) < MIN_SECTION_CHARS:
        padding = f"Further detail on {label.lower()} will be refined as the project progresses."
        text = f"{text}\n\n{padding}" if text else padding
    if text and not text.endswith(_TERMINAL_ENDINGS):
        text = f"{text}."
    return text


class GenerationOrchestrator:
    def __init__(
        self,
        store: GenerationStore,
        settings: Optional[GenerationSettings] = None,
        client_factory: Optional[ClientFactory] = None,
        locks: Optional[GenerationLocks] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.store = store
        self.settings = settings or GenerationSettings.from_env()
        self.client_factory = client_factory or (
            lambda credentials: create_llm_client(credentials, self.settings)
        )
        self.locks = locks or DEFAULT_LOCKS
        self.rate_limiter = rate_limiter

    def authorize_project(self, user_id: Optional[str], project_id: str) -> Project:
        project = self.store.get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found")
        if not user_id:
            raise UnauthenticatedError()
        if project.user_id != user_id:
            raise ForbiddenError()
        return project

    def _limit(self, name: str, key: str = GLOBAL_KEY) -> None:
        if self.rate_limiter is not None:
            self.rate_limiter.limit(name, key)

    def _require_phase(self, project_id: str, phase_id: str) -> Phase:
        phase = self.store.get_phase(project_id, phase_id)
        if phase is None:
            raise NotFoundError("Phase not found")
        return phase

    def _deadline(self) -> Optional[float]:
        if self.settings.generation_deadline_s is None:
            return None
        return time.time() + self.settings.generation_deadline_s

    def select_model(
        self,
        credentials: Optional[ProviderCredentials],
        enabled_models: Sequence[LlmModel],
        model_id: Optional[str] = None,
    ) -> LlmModel:
        requested = model_id or (credentials.model_id if credentials else "")
        if requested:
            model = get_model_by_id(requested)
            if model is None:
                model = next((item for item in enabled_models if item.id == requested), None)
            return model or get_fallback_model()
        if credentials is not None and credentials.provider:
            for item in enabled_models:
                if item.provider == credentials.provider:
                    credentials.model_id = item.id
                    return item
        return get_fallback_model()

    def resolve_context(self, user_id: str, model_id: Optional[str] = None) -> GenerationContext:
        # Re-read on every call so rotated system keys take effect immediately.
        user_config = self.store.get_user_config(user_id)
        try:
            system_credentials = self.store.get_system_credentials()
        except SecretsConfigError as exc:
            logger.warning("system_credentials_unavailable", error=exc.detail)
            system_credentials = {}
        enabled_models = select_enabled_models(self.store.list_enabled_models())
        credentials = resolve_credentials(user_config, system_credentials, enabled_models)
        model = self.select_model(credentials, enabled_models, model_id)
        client = self.client_factory(credentials)
        logger.info(
            "generation_context_resolved",
            provider=credentials.provider if credentials else None,
            model=model.id,
            has_client=client is not None,
        )
        return GenerationContext(credentials=credentials, model=model, client=client)

    async def _complete(
        self,
        client: LLMProvider,
        prompt: str,
        *,
        model: LlmModel,
        max_tokens: int,
        temperature: float,
        deadline: Optional[float],
    ) -> NormalizedResponse:
        async def attempt() -> NormalizedResponse:
            return await client.complete(
                prompt, model=model.id, max_tokens=max_tokens, temperature=temperature
            )

        return await retry_with_backoff(
            attempt,
            retries=self.settings.retries,
            min_delay_ms=self.settings.retry_min_delay_ms,
            max_delay_ms=self.settings.retry_max_delay_ms,
            deadline=deadline,
        )

    def _answer_max_tokens(self, model: LlmModel) -> int:
        return min(model.max_output_tokens or self.settings.answer_max_tokens, self.settings.answer_max_tokens)

    async def _timed_complete(
        self,
        operation: str,
        context: GenerationContext,
        client: LLMProvider,
        prompt: str,
        *,
        max_tokens: int,
        temperature: float,
        deadline: Optional[float],
    ) -> NormalizedResponse:
        started = time.monotonic()
        try:
            response = await self._complete(
                client,
                prompt,
                model=context.model,
                max_tokens=max_tokens,
                temperature=temperature,
                deadline=deadline,
            )
        except Exception as exc:
            log_telemetry(
                "warn",
                {
                    "operation": operation,
                    "provider": context.model.provider,
                    "model": context.model.id,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                    "success": False,
                    "error": str(exc),
                },
            )
            raise
        log_telemetry(
            "info",
            {
                "operation": operation,
                "provider": context.model.provider,
                "model": context.model.id,
                "duration_ms": int((time.monotonic() - started) * 1000),
                "success": True,
                "usage": usage_summary(response),
            },
        )
        return response

    # Questions

    async def _ai_questions(
        self, user_id: str, project: Project, phase_id: str
    ) -> List[Question] | AiFailure:
        bounds = phases.question_range(phase_id)
        try:
            context = self.resolve_context(user_id)
            if context.client is None:
                return AiFailure("no_llm_client")
            prompt = prompts.questions_prompt(
                phase_id=phase_id,
                phase_title=phases.get_phase_title(phase_id),
                project_title=project.title,
                project_description=project.description,
                count=bounds.max,
                minimum=bounds.min,
            )
            response = await self._timed_complete(
                "generate_questions",
                context,
                context.client,
                prompt,
                max_tokens=self._answer_max_tokens(context.model),
                temperature=QUESTION_TEMPERATURE,
                deadline=self._deadline(),
            )
            items = parse_questions_payload(response.content)
        except (SpecForgeError, ValueError, ValidationError) as exc:
            return AiFailure(str(exc) or exc.__class__.__name__)
        if len(items) < bounds.min:
            return AiFailure(f"too_few_questions:{len(items)}")
        return [
            Question(
                id=f"{phase_id}-q{index}",
                text=item["text"],
                answer=None,
                ai_generated=True,
                required=item["required"],
            )
            for index, item in enumerate(items[: bounds.max], start=1)
        ]

    async def generate_questions(
        self, user_id: str, project_id: str, phase_id: str
    ) -> List[Question]:
        project = self.authorize_project(user_id, project_id)
        self._limit("generate_questions", user_id)
        self._require_phase(project_id, phase_id)
        result = await self._ai_questions(user_id, project, phase_id)
        if isinstance(result, AiFailure):
            log_telemetry(
                "warn",
                {
                    "operation": "generate_questions",
                    "phase_id": phase_id,
                    "success": False,
                    "fallback": "static_questions",
                    "error": result.reason,
                },
            )
            questions = phases.static_questions(phase_id)
        else:
            questions = result
        self.store.update_phase_questions(project_id, phase_id, questions)
        logger.info(
            "questions_generated",
            project_id=project_id,
            phase_id=phase_id,
            count=len(questions),
            ai_generated=not isinstance(result, AiFailure),
        )
        return questions

    # Answers

    async def generate_question_answer(
        self, user_id: str, project_id: str, phase_id: str, question_id: str
    ) -> str:
        project = self.authorize_project(user_id, project_id)
        self._limit("generate_question_answer", user_id)
        phase = self._require_phase(project_id, phase_id)
        index = next(
            (position for position, item in enumerate(phase.questions) if item.id == question_id),
            None,
        )
        if index is None:
            raise NotFoundError("Question not found")
        target = phase.questions[index]
        previous = "\n\n".join(
            f"{item.text}\nAnswer: {item.answer}" for item in phase.questions[:index] if item.answer
        )
        context = self.resolve_context(user_id)
        if context.client is None:
            raise CredentialsUnavailableError()
        prompt = prompts.answer_prompt(
            project_title=project.title,
            project_description=project.description,
            question_text=target.text,
            previous_answers=previous,
        )
        response = await self._timed_complete(
            "generate_question_answer",
            context,
            context.client,
            prompt,
            max_tokens=self._answer_max_tokens(context.model),
            temperature=ANSWER_TEMPERATURE,
            deadline=self._deadline(),
        )
        return response.content.strip()

    async def generate_all_question_answers(
        self, user_id: str, project_id: str, phase_id: str
    ) -> List[Dict[str, str]]:
        project = self.authorize_project(user_id, project_id)
        self._limit("generate_question_answer", user_id)
        phase = self._require_phase(project_id, phase_id)
        if not phase.questions:
            return []
        context = self.resolve_context(user_id)
        if context.client is None:
            raise CredentialsUnavailableError()
        deadline = self._deadline()
        answered: List[Question] = []
        # Strictly in stored order: every prompt embeds the answers produced before it.
        for question in phase.questions:
            previous = "\n\n".join(f"{item.text}\nAnswer: {item.answer}" for item in answered)
            prompt = prompts.batch_answer_prompt(
                project_title=project.title,
                project_description=project.description,
                question_text=question.text,
                previous_answers=previous,
            )
            response = await self._timed_complete(
                "generate_all_question_answers",
                context,
                context.client,
                prompt,
                max_tokens=self._answer_max_tokens(context.model),
                temperature=ANSWER_TEMPERATURE,
                deadline=deadline,
            )
            answered.append(
                question.model_copy(update={"answer": response.content.strip(), "ai_generated": True})
            )
        return [{"question_id": item.id, "answer": item.answer or ""} for item in answered]

    def save_answer(
        self,
        user_id: str,
        project_id: str,
        phase_id: str,
        question_id: str,
        answer: str,
        ai_generated: bool = False,
    ) -> Question:
        self.authorize_project(user_id, project_id)
        phase = self._require_phase(project_id, phase_id)
        updated: Optional[Question] = None
        questions: List[Question] = []
        for item in phase.questions:
            if item.id == question_id:
                item = item.model_copy(update={"answer": answer, "ai_generated": ai_generated})
                updated = item
            questions.append(item)
        if updated is None:
            raise NotFoundError("Question not found")
        self.store.update_phase_questions(project_id, phase_id, questions)
        return updated

    def save_batch_answers(
        self,
        user_id: str,
        project_id: str,
        phase_id: str,
        answers: Sequence[QuestionAnswer],
    ) -> List[Dict[str, str]]:
        """Store accepted batch answers as AI-generated; blank answers are skipped."""
        self.authorize_project(user_id, project_id)
        phase = self._require_phase(project_id, phase_id)
        submitted = {item.question_id: item.answer for item in answers}
        if set(submitted) - {item.id for item in phase.questions}:
            raise NotFoundError("Question not found")
        saved = phases.collect_batch_answers(
            [
                item.model_copy(update={"answer": submitted[item.id], "ai_generated": True})
                for item in phase.questions
                if item.id in submitted
            ]
        )
        accepted = {entry["question_id"]: entry["answer"] for entry in saved}
        if accepted:
            questions = [
                item.model_copy(update={"answer": accepted[item.id], "ai_generated": True})
                if item.id in accepted
                else item
                for item in phase.questions
            ]
            self.store.update_phase_questions(project_id, phase_id, questions)
        return saved

    # Phase documents

    def _check_ready_to_generate(self, phase_id: str, questions: Sequence[Question]) -> List[Question]:
        answered = phases.answered_questions(questions)
        if phase_id in phases.ANSWER_OPTIONAL_PHASES:
            return answered
        if phases.has_missing_required_answers(questions):
            raise GenerationValidationError("Please answer all required questions before generating")
        if not answered:
            raise GenerationValidationError("Please answer at least one question before generating")
        return answered

    async def _critique(
        self,
        context: GenerationContext,
        client: LLMProvider,
        project: Project,
        section_name: str,
        content: str,
        deadline: Optional[float],
    ) -> str:
        if not self.settings.self_critique:
            return content
        try:
            response = await self._complete(
                client,
                prompts.critique_prompt(section_name, project.title, content),
                model=context.model,
                max_tokens=min(context.model.max_output_tokens, CRITIQUE_MAX_TOKENS),
                temperature=CRITIQUE_TEMPERATURE,
                deadline=deadline,
            )
        except SpecForgeError as exc:
            logger.warning("section_critique_failed", section=section_name, error=str(exc))
            return content
        critiqued = response.content.strip()
        if not critiqued or critiqued.startswith(CRITIQUE_APPROVED):
            return content
        return phases.strip_leading_heading(critiqued)

    async def _generate_sections(
        self,
        *,
        project: Project,
        phase_id: str,
        plan: Sequence[SectionPlan],
        context: GenerationContext,
        client: LLMProvider,
        answered: Sequence[Question],
        on_section: Optional[SectionCallback] = None,
    ) -> Tuple[List[SectionContent], int]:
        sections: List[SectionContent] = []
        continued_sections = 0
        deadline = self._deadline()
        model = context.model
        for index, section in enumerate(plan):
            if self.store.is_cancel_requested(project.id, phase_id):
                raise GenerationCancelledError("Generation cancelled")
            system_prompt = prompts.phase_section_system_prompt(
                section_name=section.name,
                phase_id=phase_id,
                project_title=project.title,
                project_description=project.description,
                section_instructions=phases.get_section_instructions(section.name),
            )
            user_prompt = prompts.phase_section_user_prompt(
                section_name=section.name,
                section_questions=phases.extract_relevant_questions(answered, section.name),
                previous_sections=sections,
            )
            max_tokens = min(section.max_tokens, model.max_output_tokens)

            async def complete_turn(prompt: str, max_tokens: int = max_tokens) -> NormalizedResponse:
                return await self._timed_complete(
                    "generate_section",
                    context,
                    client,
                    prompt,
                    max_tokens=max_tokens,
                    temperature=SECTION_TEMPERATURE,
                    deadline=deadline,
                )

            def next_prompt(so_far: str, system_prompt: str = system_prompt) -> str:
                return prompts.continuation_prompt(system_prompt, so_far)

            result = await continue_if_truncated(
                prompt=f"{system_prompt}\n\n{user_prompt}",
                complete=complete_turn,
                continuation_prompt=next_prompt,
                max_turns=self.settings.continuation_max_turns,
                deadline=deadline,
            )
            if result.continued:
                continued_sections += 1
            content = phases.strip_leading_heading(result.content)
            content = await self._critique(context, client, project, section.name, content, deadline)
            content = repair_section(content, project.title, section.name)
            generated = SectionContent(name=section.name, content=content)
            sections.append(generated)
            logger.info(
                "section_generated",
                project_id=project.id,
                phase_id=phase_id,
                section=section.name,
                turns=result.turns,
            )
            if on_section is not None:
                await on_section(index, generated, sections)
        return sections, continued_sections

    def _prepare_generation(
        self, user_id: str, project_id: str, phase_id: str, model_id: Optional[str]
    ) -> Tuple[Project, Phase, List[Question], GenerationContext, LLMProvider, List[SectionPlan]]:
        project = self.authorize_project(user_id, project_id)
        self._limit("generate_phase", user_id)
        self._limit("global_phase_generation")
        phase = self._require_phase(project_id, phase_id)
        answered = self._check_ready_to_generate(phase_id, phase.questions)
        context = self.resolve_context(user_id, model_id)
        if context.client is None:
            raise CredentialsUnavailableError()
        artifact_type = phases.get_artifact_type_for_phase(phase_id)
        validate_model_for_artifact(context.model, artifact_type)
        plan = plan_sections(
            context.model,
            get_section_plan(artifact_type, phase_id),
            self.settings.section_safety_ratio,
        )
        return project, phase, answered, context, context.client, plan

    def _section_metadata(self, section: SectionContent, model: LlmModel) -> ArtifactSection:
        return ArtifactSection(
            name=section.name, tokens=estimate_token_count(section.content), model=model.id
        )

    async def generate_phase(
        self, user_id: str, project_id: str, phase_id: str, model_id: Optional[str] = None
    ) -> GenerationResult:
        async with self.locks.hold(project_id, phase_id):
            project, phase, answered, context, client, plan = self._prepare_generation(
                user_id, project_id, phase_id, model_id
            )
            self.store.set_cancel_requested(project_id, phase_id, False)
            self.store.update_phase_status(project_id, phase_id, PhaseStatus.generating)
            try:
                sections, continued = await self._generate_sections(
                    project=project,
                    phase_id=phase_id,
                    plan=plan,
                    context=context,
                    client=client,
                    answered=answered,
                )
            except GenerationCancelledError:
                # The previous artifact stays untouched.
                self.store.update_phase_status(project_id, phase_id, phase.status)
                logger.info("phase_generation_cancelled", project_id=project_id, phase_id=phase_id)
                raise
            except Exception:
                self.store.update_phase_status(project_id, phase_id, PhaseStatus.error)
                raise
            content = merge_section_content(sections)
            artifact_id = self.store.replace_artifact(
                ArtifactCreate(
                    project_id=project_id,
                    phase_id=phase_id,
                    type=phases.get_artifact_type_for_phase(phase_id),
                    title=phases.artifact_title(phase_id),
                    content=content,
                    preview_html=render_preview_html(content),
                    sections=[self._section_metadata(item, context.model) for item in sections],
                )
            )
            self.store.update_phase_status(project_id, phase_id, PhaseStatus.ready)
            logger.info(
                "phase_generated",
                project_id=project_id,
                phase_id=phase_id,
                artifact_id=artifact_id,
                sections=len(sections),
                continued_sections=continued,
            )
            return GenerationResult(artifact_id=artifact_id, continued_sections=continued)

    async def generate_phase_streaming(
        self, user_id: str, project_id: str, phase_id: str, model_id: Optional[str] = None
    ) -> GenerationResult:
        """Generate section by section, appending each one to the phase artifact.

        Partial output stays visible: on cancellation or failure the artifact keeps
        the sections produced so far and its stream status records the outcome.
        """
        async with self.locks.hold(project_id, phase_id):
            project, phase, answered, context, client, plan = self._prepare_generation(
                user_id, project_id, phase_id, model_id
            )
            artifact_type = phases.get_artifact_type_for_phase(phase_id)
            title = phases.artifact_title(phase_id)
            state: Dict[str, Optional[str]] = {"artifact_id": None}

            async def append_section(
                index: int, section: SectionContent, sections: List[SectionContent]
            ) -> None:
                content = merge_section_content(sections)
                state["artifact_id"] = self.store.append_artifact_section(
                    project_id,
                    phase_id,
                    artifact_type=artifact_type,
                    title=title,
                    content=content,
                    preview_html=render_preview_html(content),
                    section=self._section_metadata(section, context.model),
                    reset=index == 0,
                )

            self.store.set_cancel_requested(project_id, phase_id, False)
            self.store.update_phase_status(project_id, phase_id, PhaseStatus.generating)
            try:
                _, continued = await self._generate_sections(
                    project=project,
                    phase_id=phase_id,
                    plan=plan,
                    context=context,
                    client=client,
                    answered=answered,
                    on_section=append_section,
                )
            except GenerationCancelledError:
                if state["artifact_id"]:
                    self.store.set_artifact_stream_status(state["artifact_id"], StreamStatus.cancelled)
                self.store.update_phase_status(project_id, phase_id, phase.status)
                raise
            except Exception:
                if state["artifact_id"]:
                    self.store.set_artifact_stream_status(state["artifact_id"], StreamStatus.error)
                self.store.update_phase_status(project_id, phase_id, PhaseStatus.error)
                raise
            artifact_id = state["artifact_id"] or ""
            self.store.set_artifact_stream_status(artifact_id, StreamStatus.complete)
            self.store.update_phase_status(project_id, phase_id, PhaseStatus.ready)
            return GenerationResult(artifact_id=artifact_id, continued_sections=continued)

    def cancel_generation(self, user_id: str, project_id: str, phase_id: str) -> bool:
        self.authorize_project(user_id, project_id)
        self._require_phase(project_id, phase_id)
        self.store.set_cancel_requested(project_id, phase_id, True)
        artifact = self.store.get_artifact(project_id, phase_id)
        if artifact is not None and artifact.stream_status == StreamStatus.streaming:
            self.store.set_artifact_stream_status(
                artifact.id, StreamStatus.cancelled, artifact.current_section
            )
        logger.info("generation_cancel_requested", project_id=project_id, phase_id=phase_id)
        return self.locks.is_locked(project_id, phase_id)

    def export_project(self, user_id: str, project_id: str) -> bytes:
        self.authorize_project(user_id, project_id)
        self._limit("generate_project_zip", user_id)
        return export_project_zip(self.store.list_artifacts(project_id))
