"""
Provider Registry.

Maps model ids to providers through an explicit catalog, tracks which
providers are configured and builds cached completion adapters.
Credentials come from the runtime LLM config first, then from settings.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic_ai.models import Model

from src.ai.provider import LLMProvider, ProviderError
from src.config import Settings
from src.services.llm_config import CustomProviderConfig, LLMConfigStore

logger = logging.getLogger(__name__)


class ProviderType(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GEMINI = "gemini"
    CUSTOM = "custom"


PROVIDER_DISPLAY_NAMES = {
    ProviderType.ANTHROPIC: "Anthropic",
    ProviderType.OPENAI: "OpenAI",
    ProviderType.GEMINI: "Google Gemini",
    ProviderType.CUSTOM: "Custom (OpenAI-compatible)",
}


@dataclass(frozen=True)
class ModelInfo:
    """Catalog entry for a model."""

    id: str
    name: str
    provider: ProviderType
    max_tokens: int = 4096

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider.value,
            "maxTokens": self.max_tokens,
        }


class ProviderRegistry:
    """
    Registry of LLM providers.

    Features:
    - Exact model id -> provider mapping from the model catalog
    - Provider status from configured API keys
    - Runtime credential changes through the LLM config store
    - One cached LLMProvider per provider type
    """

    def __init__(
        self,
        settings: Settings,
        catalog: Optional[list[ModelInfo]] = None,
        config: Optional[LLMConfigStore] = None,
    ):
        self._settings = settings
        self._catalog: dict[str, ModelInfo] = {m.id: m for m in catalog or []}
        self._config = config or LLMConfigStore()
        self._providers: dict[ProviderType, LLMProvider] = {}
        self._http_client: Optional[httpx.AsyncClient] = None
        self._retired_clients: list[httpx.AsyncClient] = []

    # ==================== Catalog ====================

    def get_model(self, model_id: str) -> Optional[ModelInfo]:
        """Catalog entry or the configured custom model."""
        model = self._catalog.get(model_id)
        if model:
            return model
        custom = self._custom_model()
        if custom and custom.id == model_id:
            return custom
        return None

    def resolve_provider_type(self, model_id: str) -> ProviderType:
        """
        Find the provider serving a model.

        Order: catalog entry, the configured custom model, the selected
        provider, then the default provider.
        """
        model = self.get_model(model_id)
        if model:
            return model.provider
        selected = self._config.config.selected_provider
        if selected:
            return ProviderType(selected)
        return ProviderType(self._settings.default_llm_provider)

    def list_models(self) -> list[ModelInfo]:
        """Models of every configured provider."""
        models = [
            m for m in self._catalog.values() if self.is_configured(m.provider)
        ]
        custom = self._custom_model()
        if custom and custom.id not in self._catalog:
            models.append(custom)
        return models

    def get_default_model_id(self) -> str:
        """Selected model, else the configured default, if available; otherwise ''."""
        available = {m.id for m in self.list_models()}
        for model_id in (
            self._config.config.selected_model_id,
            self._settings.default_model_id,
        ):
            if model_id and model_id in available:
                return model_id
        return ""

    def _custom_model(self) -> Optional[ModelInfo]:
        custom = self._custom_config()
        if custom is None:
            return None
        return ModelInfo(
            id=custom.model_id,
            name=custom.model_name or custom.model_id,
            provider=ProviderType.CUSTOM,
        )

    # ==================== Credentials ====================

    def _api_key(self, provider: ProviderType) -> Optional[str]:
        if self._config.is_disabled(provider.value):
            return None
        if provider is ProviderType.CUSTOM:
            custom = self._custom_config()
            return custom.api_key if custom else None
        return self._config.get_api_key(provider.value) or self._settings.get_api_key(
            provider.value
        )

    def _custom_config(self) -> Optional[CustomProviderConfig]:
        if self._config.is_disabled(ProviderType.CUSTOM.value):
            return None
        if self._config.config.custom:
            return self._config.config.custom

        s = self._settings
        if not (s.custom_base_url and s.custom_api_key and s.custom_model_id):
            return None
        return CustomProviderConfig(
            base_url=s.custom_base_url,
            api_key=s.custom_api_key,
            model_id=s.custom_model_id,
            model_name=s.custom_model_name or s.custom_model_id,
            custom_headers=s.custom_headers,
        )

    def save_api_key(self, provider: ProviderType, api_key: str) -> None:
        """Store a vendor API key and rebuild adapters."""
        if provider is ProviderType.CUSTOM:
            raise ValueError("Use save_custom_provider for the custom endpoint")
        self._config.set_api_key(provider.value, api_key)
        self._reset()
        logger.info("API key updated for %s", provider.value)

    def save_custom_provider(self, custom: CustomProviderConfig) -> None:
        """Store the custom endpoint and rebuild adapters."""
        self._config.set_custom_provider(custom)
        self._reset()
        logger.info("Custom provider configured: %s (%s)", custom.base_url, custom.model_id)

    def remove_provider(self, provider: ProviderType) -> None:
        """Remove a provider's credentials, including ones from the environment."""
        self._config.delete_provider(provider.value)
        self._reset()
        logger.info("Provider configuration deleted: %s", provider.value)

    def set_selection(self, provider: ProviderType, model_id: str) -> None:
        self._config.set_selection(provider.value, model_id)
        logger.info("Selected %s model %s", provider.value, model_id)

    def get_selection(self) -> dict[str, Optional[str]]:
        return {
            "selectedProvider": self._config.config.selected_provider,
            "selectedModelId": self._config.config.selected_model_id,
        }

    def _reset(self) -> None:
        """Drop adapters; in-flight streams keep the HTTP client until shutdown."""
        self.clear_cache()
        if self._http_client is not None:
            self._retired_clients.append(self._http_client)
            self._http_client = None

    # ==================== Status ====================

    def is_configured(self, provider: ProviderType) -> bool:
        if provider is ProviderType.CUSTOM:
            return self._custom_config() is not None
        return bool(self._api_key(provider))

    def get_statuses(self) -> list[dict]:
        return [
            {
                "provider": provider.value,
                "isConfigured": self.is_configured(provider),
                "displayName": PROVIDER_DISPLAY_NAMES[provider],
            }
            for provider in ProviderType
        ]

    def get_custom_status(self) -> Optional[dict[str, Any]]:
        """Custom endpoint details without its API key."""
        custom = self._custom_config()
        if custom is None:
            return None
        return {
            "baseUrl": custom.base_url,
            "modelId": custom.model_id,
            "modelName": custom.model_name,
            "isConfigured": True,
            "hasCustomHeaders": bool(custom.custom_headers),
        }

    # ==================== Providers ====================

    def get_provider(self, provider: ProviderType) -> LLMProvider:
        """
        Get or create the adapter for a provider.

        Raises:
            ProviderError: if the provider has no credentials configured
        """
        if not self.is_configured(provider):
            raise ProviderError(
                f"No API key configured for {PROVIDER_DISPLAY_NAMES[provider]}",
                provider=provider.value,
            )

        if provider not in self._providers:
            self._providers[provider] = LLMProvider(
                provider.value,
                model_factory=lambda model_id, p=provider: self._build_model(p, model_id),
                max_tokens=self._settings.max_output_tokens,
            )
            logger.info("Created %s provider", provider.value)
        return self._providers[provider]

    def for_model(self, model_id: str) -> LLMProvider:
        """Adapter serving the given model id."""
        return self.get_provider(self.resolve_provider_type(model_id))

    def clear_cache(self) -> None:
        """Drop cached adapters (after credential changes)."""
        self._providers.clear()

    def _build_model(self, provider: ProviderType, model_id: str) -> Model:
        """
        Create the PydanticAI model for a provider with its credentials.

        Vendor modules are imported here so a missing SDK only breaks
        its own provider.
        """
        api_key = self._api_key(provider)

        if provider is ProviderType.ANTHROPIC:
            from pydantic_ai.models.anthropic import AnthropicModel
            from pydantic_ai.providers.anthropic import AnthropicProvider

            return AnthropicModel(model_id, provider=AnthropicProvider(api_key=api_key))

        if provider is ProviderType.OPENAI:
            from pydantic_ai.models.openai import OpenAIChatModel
            from pydantic_ai.providers.openai import OpenAIProvider

            return OpenAIChatModel(model_id, provider=OpenAIProvider(api_key=api_key))

        if provider is ProviderType.GEMINI:
            from pydantic_ai.models.google import GoogleModel
            from pydantic_ai.providers.google import GoogleProvider

            return GoogleModel(model_id, provider=GoogleProvider(api_key=api_key))

        from pydantic_ai.models.openai import OpenAIChatModel
        from pydantic_ai.providers.openai import OpenAIProvider

        custom = self._custom_config()
        if custom is None:
            raise ProviderError("Custom provider is not configured", provider=provider.value)
        return OpenAIChatModel(
            model_id,
            provider=OpenAIProvider(
                base_url=custom.base_url,
                api_key=custom.api_key,
                http_client=self._get_custom_http_client(custom),
            ),
        )

    def _get_custom_http_client(self, custom: CustomProviderConfig) -> httpx.AsyncClient:
        """Shared HTTP client carrying the custom endpoint's extra headers."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                headers=custom.headers(),
                timeout=httpx.Timeout(600.0, connect=10.0),
            )
        return self._http_client

    async def aclose(self) -> None:
        """Close HTTP clients."""
        clients = self._retired_clients
        self._retired_clients = []
        if self._http_client is not None:
            clients.append(self._http_client)
            self._http_client = None
        for client in clients:
            await client.aclose()
