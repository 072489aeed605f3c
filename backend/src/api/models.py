"""
Models API endpoints.

- GET    /models                       - available models and provider status
- POST   /models/providers/{provider}  - set an API key or the custom endpoint
- DELETE /models/providers/{provider}  - remove a provider's configuration
- POST   /models/selection             - remember the selected provider and model
"""
import json
import logging
from typing import Any, Optional

import httpx
from fastapi import APIRouter, HTTPException

from src.ai.registry import ProviderType
from src.api.dependencies import CurrentUser, Services
from src.models.chat import CamelModel
from src.services.llm_config import CustomProviderConfig

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/models", tags=["models"])

INVALID_PROVIDER = "Invalid provider. Must be anthropic, openai, gemini, or custom"


class SetProviderRequest(CamelModel):
    """Credentials for a provider. Endpoint fields apply to ``custom`` only."""

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model_id: Optional[str] = None
    model_name: Optional[str] = None
    custom_headers: Optional[str] = None


class SelectionRequest(CamelModel):
    provider: Optional[str] = None
    model_id: Optional[str] = None


def _parse_provider(provider: str) -> ProviderType:
    try:
        return ProviderType(provider)
    except ValueError:
        raise HTTPException(status_code=400, detail=INVALID_PROVIDER) from None


def _required(value: Optional[str], message: str) -> str:
    if not value or not value.strip():
        raise HTTPException(status_code=400, detail=message)
    return value.strip()


def _validate_base_url(base_url: str) -> str:
    try:
        url = httpx.URL(base_url)
    except httpx.InvalidURL:
        url = None
    if url is None or url.scheme not in ("http", "https") or not url.host:
        raise HTTPException(status_code=400, detail="Invalid base URL format")
    return base_url


def _validate_headers(custom_headers: Optional[str]) -> Optional[str]:
    if not custom_headers or not custom_headers.strip():
        return None
    try:
        parsed = json.loads(custom_headers)
    except json.JSONDecodeError:
        parsed = None
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail="Custom headers must be valid JSON")
    return custom_headers


@router.get("")
async def list_models(user_id: CurrentUser, services: Services) -> dict[str, Any]:
    """
    List models available to the user.

    Only models of providers with credentials configured are returned,
    together with each provider's status and the default model id.
    """
    providers = services.providers
    models = providers.list_models()
    logger.debug("Listing %d models for %s", len(models), user_id)

    return {
        "models": [m.to_dict() for m in models],
        "defaultModelId": providers.get_default_model_id(),
        "providerStatuses": providers.get_statuses(),
        "customProvider": providers.get_custom_status(),
        **providers.get_selection(),
    }


@router.post("/providers/{provider}")
async def set_provider(
    provider: str,
    request: SetProviderRequest,
    user_id: CurrentUser,
    services: Services,
) -> dict[str, Any]:
    """Save an API key, or the whole custom endpoint configuration."""
    provider_type = _parse_provider(provider)
    api_key = _required(request.api_key, "API key is required")

    if provider_type is ProviderType.CUSTOM:
        base_url = _required(request.base_url, "Base URL is required for custom provider")
        model_id = _required(request.model_id, "Model ID is required for custom provider")
        model_name = _required(
            request.model_name, "Model name is required for custom provider"
        )
        custom = CustomProviderConfig(
            base_url=_validate_base_url(base_url),
            api_key=api_key,
            model_id=model_id,
            model_name=model_name,
            custom_headers=_validate_headers(request.custom_headers),
        )
        services.providers.save_custom_provider(custom)
        return {"success": True, "message": "Custom provider has been configured"}

    services.providers.save_api_key(provider_type, api_key)
    return {
        "success": True,
        "provider": provider_type.value,
        "message": f"API key for {provider_type.value} has been saved",
    }


@router.delete("/providers/{provider}")
async def delete_provider(
    provider: str,
    user_id: CurrentUser,
    services: Services,
) -> dict[str, Any]:
    """Remove a provider's configuration."""
    provider_type = _parse_provider(provider)
    services.providers.remove_provider(provider_type)
    return {
        "success": True,
        "provider": provider_type.value,
        "message": f"Configuration for {provider_type.value} has been removed",
    }


@router.post("/selection")
async def set_selection(
    request: SelectionRequest,
    user_id: CurrentUser,
    services: Services,
) -> dict[str, Any]:
    """Remember the provider and model picked in the model selector."""
    if not request.provider or not request.model_id:
        raise HTTPException(status_code=400, detail="Provider and modelId are required")
    provider_type = _parse_provider(request.provider)
    services.providers.set_selection(provider_type, request.model_id)
    return {"success": True, "message": "Configuration has been saved"}
