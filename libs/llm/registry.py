from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from libs.core import logging as core_logging
from libs.core.models import LlmModel, Provider, RegistryEntry

logger = core_logging.get_logger("llm.registry")

PROVIDER_DISPLAY_NAMES = {
    Provider.openai.value: "OpenAI",
    Provider.openrouter.value: "OpenRouter",
    Provider.deepseek.value: "DeepSeek",
    Provider.anthropic.value: "Anthropic",
    Provider.mistral.value: "Mistral AI",
    Provider.zai.value: "Z.AI",
    Provider.minimax.value: "Minimax",
    Provider.other.value: "Other",
    "google": "Google Gemini",
    "azure": "Azure OpenAI",
}

# Rough output needed for a three-section artifact.
ARTIFACT_MIN_SECTIONS = 3
TOKENS_PER_SECTION_ESTIMATE = 1000


def _entry(
    model_id: str,
    provider: str,
    display_name: str,
    context_tokens: int,
    max_output_tokens: int,
    default_max: int,
) -> RegistryEntry:
    return RegistryEntry(
        model=LlmModel(
            id=model_id,
            provider=provider,
            context_tokens=context_tokens,
            max_output_tokens=max_output_tokens,
            default_max=default_max,
            enabled=True,
        ),
        provider=provider,
        display_name=display_name,
    )


MODEL_REGISTRY: List[RegistryEntry] = [
    _entry("gpt-4o", "openai", "GPT-4o", 128000, 16384, 8000),
    _entry("gpt-4o-mini", "openai", "GPT-4o Mini", 128000, 16384, 8000),
    _entry("gpt-4-turbo", "openai", "GPT-4 Turbo", 128000, 4096, 2000),
    _entry("gpt-3.5-turbo", "openai", "GPT-3.5 Turbo", 16385, 4096, 2000),
    _entry("claude-3-5-sonnet", "anthropic", "Claude 3.5 Sonnet", 200000, 8192, 4000),
    _entry("claude-3-5-haiku", "anthropic", "Claude 3.5 Haiku", 200000, 8192, 4000),
    _entry("claude-3-opus", "anthropic", "Claude 3 Opus", 200000, 4096, 2000),
    _entry("claude-sonnet-4-20250514", "anthropic", "Claude Sonnet 4", 200000, 8192, 4000),
    _entry("mistral-large", "mistral", "Mistral Large", 32000, 4096, 2000),
    _entry("mistral-medium", "mistral", "Mistral Medium", 32000, 4096, 2000),
    _entry("mistral-small", "mistral", "Mistral Small", 32000, 4096, 2000),
]

FALLBACK_MODELS: List[LlmModel] = [
    LlmModel(
        id="openai-gpt-4o",
        provider="openai",
        context_tokens=128000,
        max_output_tokens=16384,
        default_max=8000,
    ),
    LlmModel(
        id="anthropic-claude-3-5-sonnet",
        provider="anthropic",
        context_tokens=200000,
        max_output_tokens=8192,
        default_max=4000,
    ),
    LlmModel(
        id="mistral-large",
        provider="mistral",
        context_tokens=32000,
        max_output_tokens=4096,
        default_max=2000,
    ),
]


def get_model_by_id(model_id: str) -> Optional[LlmModel]:
    for entry in MODEL_REGISTRY:
        if entry.model.id == model_id:
            return entry.model
    return None


def get_models_by_provider(provider: str) -> List[RegistryEntry]:
    return [entry for entry in MODEL_REGISTRY if entry.provider == provider]


def get_all_models() -> List[RegistryEntry]:
    return list(MODEL_REGISTRY)


def get_enabled_models() -> List[RegistryEntry]:
    return [entry for entry in MODEL_REGISTRY if entry.model.enabled is not False]


def get_provider_display_name(provider: str) -> str:
    return PROVIDER_DISPLAY_NAMES.get(provider, provider)


def get_model_display_name(model_id: str) -> str:
    for entry in MODEL_REGISTRY:
        if entry.model.id == model_id:
            return entry.display_name
    return model_id


def get_fallback_model(model_id: Optional[str] = None) -> LlmModel:
    if model_id:
        model = get_model_by_id(model_id)
        if model is not None:
            return model
    return FALLBACK_MODELS[0]


def select_enabled_models(models: Sequence[LlmModel]) -> List[LlmModel]:
    return [model for model in models if model.enabled]


def get_first_enabled_model_for_provider(
    provider: str, db_models: Optional[Sequence[LlmModel]] = None
) -> Optional[str]:
    """Pick a model id for ``provider``.

    Admin-enabled database models win when any are supplied; otherwise the first
    enabled static registry entry for the provider is used.
    """
    if db_models:
        for model in db_models:
            if model.provider == provider and model.enabled:
                return model.id
    for entry in get_enabled_models():
        if entry.provider == provider:
            return entry.model.id
    return None


def validate_provider_model_match(provider: str, model_id: str) -> Tuple[bool, Optional[str]]:
    model = get_model_by_id(model_id)
    if model is None:
        return False, f"Model not found: {model_id}"
    if model.provider != provider:
        return False, f"Model {model_id} belongs to {model.provider}, not {provider}"
    return True, None


def validate_model_for_artifact(model: LlmModel, artifact_type: str) -> Tuple[bool, Optional[str]]:
    required_tokens = ARTIFACT_MIN_SECTIONS * TOKENS_PER_SECTION_ESTIMATE
    if model.max_output_tokens < required_tokens:
        reason = f"Model max output ({model.max_output_tokens}) may be too small for {artifact_type}"
        logger.warning("model_validation_warning", model=model.id, reason=reason)
        return False, reason
    return True, None
