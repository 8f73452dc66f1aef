from libs.core.models import LlmModel
from libs.llm import registry


def _db_model(model_id: str, provider: str, enabled: bool = True) -> LlmModel:
    return LlmModel(
        id=model_id,
        provider=provider,
        context_tokens=64000,
        max_output_tokens=8000,
        default_max=4000,
        enabled=enabled,
    )


def test_lookup_by_id_and_provider():
    assert registry.get_model_by_id("gpt-4o").provider == "openai"
    assert registry.get_model_by_id("unknown") is None
    mistral = registry.get_models_by_provider("mistral")
    assert [entry.model.id for entry in mistral] == ["mistral-large", "mistral-medium", "mistral-small"]


def test_display_names():
    assert registry.get_provider_display_name("zai") == "Z.AI"
    assert registry.get_provider_display_name("openrouter") == "OpenRouter"
    assert registry.get_provider_display_name("custom") == "custom"
    assert registry.get_model_display_name("gpt-4o-mini") == "GPT-4o Mini"
    assert registry.get_model_display_name("custom-model") == "custom-model"


def test_fallback_model():
    assert registry.get_fallback_model().id == "openai-gpt-4o"
    assert registry.get_fallback_model("mistral-small").id == "mistral-small"
    assert registry.get_fallback_model("nope").id == "openai-gpt-4o"


def test_first_enabled_model_prefers_database_models():
    db_models = [_db_model("glm-4.6", "zai", enabled=False), _db_model("glm-4.5", "zai")]
    assert registry.get_first_enabled_model_for_provider("zai", db_models) == "glm-4.5"
    assert registry.get_first_enabled_model_for_provider("openai", db_models) == "gpt-4o"
    assert registry.get_first_enabled_model_for_provider("zai") is None


def test_validate_provider_model_match():
    assert registry.validate_provider_model_match("openai", "gpt-4o") == (True, None)
    ok, reason = registry.validate_provider_model_match("anthropic", "gpt-4o")
    assert not ok
    assert "openai" in reason
    ok, reason = registry.validate_provider_model_match("openai", "missing")
    assert not ok
    assert reason == "Model not found: missing"


def test_validate_model_for_artifact_is_advisory():
    small = LlmModel(
        id="tiny", provider="openai", context_tokens=4096, max_output_tokens=1024, default_max=512
    )
    ok, reason = registry.validate_model_for_artifact(small, "prd")
    assert not ok
    assert reason == "Model max output (1024) may be too small for prd"
    assert registry.validate_model_for_artifact(registry.get_model_by_id("gpt-4o"), "prd") == (True, None)


def test_select_enabled_models_filters_disabled():
    models = [_db_model("a", "openai"), _db_model("b", "openai", enabled=False)]
    assert [model.id for model in registry.select_enabled_models(models)] == ["a"]
