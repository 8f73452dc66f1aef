from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from libs.core.models import LlmModel, ProviderCredentials, SystemCredential, UserConfig

from .registry import get_first_enabled_model_for_provider


def resolve_credentials(
    user_config: Optional[UserConfig],
    system_credentials: Mapping[str, SystemCredential],
    enabled_models: Optional[Sequence[LlmModel]] = None,
) -> Optional[ProviderCredentials]:
    """Decide which provider, API key and model a request runs with.

    First applicable rule wins:

    1. the user's own API key, used verbatim with their provider and default model;
    2. the system credential keyed by ``system_key_id`` (or the user's provider),
       if present and enabled, paired with the user's chosen provider;
    3. the first enabled system credential of any provider;
    4. ``None``.

    Pure: callers pass an already decrypted credential map.
    """
    if user_config is not None and user_config.api_key:
        return ProviderCredentials(
            provider=user_config.provider,
            api_key=user_config.api_key,
            model_id=user_config.default_model,
            zai_endpoint_type=user_config.zai_endpoint_type,
            zai_is_china=user_config.zai_is_china,
        )

    if user_config is not None and user_config.provider:
        key = user_config.system_key_id or user_config.provider
        credential = system_credentials.get(key)
        if credential is not None and credential.is_enabled and credential.api_key:
            model_id = user_config.default_model or (
                get_first_enabled_model_for_provider(user_config.provider, enabled_models) or ""
            )
            return ProviderCredentials(
                provider=user_config.provider,
                api_key=credential.api_key,
                model_id=model_id,
                zai_endpoint_type=credential.zai_endpoint_type or user_config.zai_endpoint_type,
                zai_is_china=(
                    credential.zai_is_china
                    if credential.zai_is_china is not None
                    else user_config.zai_is_china
                ),
            )

    for provider, credential in system_credentials.items():
        if not credential.is_enabled or not credential.api_key:
            continue
        provider_name = credential.provider or provider
        return ProviderCredentials(
            provider=provider_name,
            api_key=credential.api_key,
            model_id=get_first_enabled_model_for_provider(provider_name, enabled_models) or "",
            zai_endpoint_type=credential.zai_endpoint_type,
            zai_is_china=credential.zai_is_china,
        )

    return None


def resolve_system_key_id(
    use_system: bool, provider: str, system_key_id: Optional[str] = None
) -> Optional[str]:
    if not use_system:
        return None
    if system_key_id:
        return system_key_id
    return provider


def to_public_user_config(config: Optional[UserConfig]) -> Optional[Dict[str, Any]]:
    if config is None:
        return None
    payload = config.model_dump(mode="json", exclude={"api_key"})
    payload["has_api_key"] = bool(config.api_key)
    return payload
