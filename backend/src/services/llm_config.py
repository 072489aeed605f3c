"""
LLM Config Store.

Provider credentials and the user's model selection set at runtime
through the models API. Stored as ``<data_dir>/llm-config.json``;
values here take precedence over the environment settings.
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import Field, ValidationError

from src.models.chat import CamelModel

logger = logging.getLogger(__name__)


class CustomProviderConfig(CamelModel):
    """OpenAI-compatible endpoint configuration."""

    base_url: str
    api_key: str
    model_id: str
    model_name: str
    custom_headers: Optional[str] = None  # JSON object

    def headers(self) -> dict[str, str]:
        if not self.custom_headers:
            return {}
        return {str(k): str(v) for k, v in json.loads(self.custom_headers).items()}


class LLMConfig(CamelModel):
    """Stored provider configuration."""

    anthropic: Optional[str] = None
    openai: Optional[str] = None
    gemini: Optional[str] = None
    custom: Optional[CustomProviderConfig] = None
    # Providers removed through the API, hidden even if set in the environment
    disabled: list[str] = Field(default_factory=list)
    selected_provider: Optional[str] = None
    selected_model_id: Optional[str] = None


class LLMConfigStore:
    """
    File-backed provider configuration.

    Without a path the configuration lives in memory only.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self.config = self._load()

    def _load(self) -> LLMConfig:
        if self.path is None or not self.path.exists():
            return LLMConfig()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return LLMConfig.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("Ignoring unreadable LLM config %s: %s", self.path, e)
            return LLMConfig()

    def save(self) -> None:
        """Write the configuration to disk (temp file + rename)."""
        if self.path is None:
            return
        tmp_path = self.path.with_suffix(".json.tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(
                self.config.model_dump(by_alias=True, exclude_none=True), f, indent=2
            )
        os.replace(tmp_path, self.path)

    def is_disabled(self, provider: str) -> bool:
        return provider in self.config.disabled

    def get_api_key(self, provider: str) -> Optional[str]:
        return getattr(self.config, provider, None)

    def set_api_key(self, provider: str, api_key: str) -> None:
        setattr(self.config, provider, api_key)
        self._enable(provider)
        self.save()

    def set_custom_provider(self, custom: CustomProviderConfig) -> None:
        self.config.custom = custom
        self._enable("custom")
        self.save()

    def delete_provider(self, provider: str) -> None:
        """Remove stored credentials and hide environment ones."""
        if provider == "custom":
            self.config.custom = None
        else:
            setattr(self.config, provider, None)
        if provider not in self.config.disabled:
            self.config.disabled.append(provider)
        self.save()

    def set_selection(self, provider: str, model_id: str) -> None:
        self.config.selected_provider = provider
        self.config.selected_model_id = model_id
        self.save()

    def _enable(self, provider: str) -> None:
        if provider in self.config.disabled:
            self.config.disabled.remove(provider)
