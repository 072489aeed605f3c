import json
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

BACKEND_DIR = Path(__file__).parent.parent

KNOWN_PROVIDERS = ("anthropic", "openai", "gemini", "custom")


class Settings(BaseSettings):
    # Storage
    data_dir: str = "data"
    models_config_path: str = str(BACKEND_DIR / "config" / "models.yaml")

    # LLM Providers
    default_llm_provider: str = "anthropic"
    default_model_id: str = "claude-sonnet-4-20250514"
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    google_api_key: Optional[str] = None

    # Custom OpenAI-compatible endpoint (OpenRouter, Ollama, LM Studio, ...)
    custom_base_url: Optional[str] = None
    custom_api_key: Optional[str] = None
    custom_model_id: Optional[str] = None
    custom_model_name: Optional[str] = None
    custom_headers: Optional[str] = None  # JSON object

    max_output_tokens: int = 4096
    system_prompt: Optional[str] = None

    # Streaming
    subscriber_queue_size: int = 1024  # 0 = unbounded

    # App settings
    allowed_users: str = ""  # comma-separated, empty = any
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    log_level: str = "INFO"

    @field_validator("data_dir")
    @classmethod
    def data_dir_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("DATA_DIR is required and cannot be empty")
        return v

    @field_validator("default_llm_provider")
    @classmethod
    def default_provider_known(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in KNOWN_PROVIDERS:
            raise ValueError(
                f"DEFAULT_LLM_PROVIDER must be one of: {', '.join(KNOWN_PROVIDERS)}"
            )
        return v

    @field_validator("custom_headers")
    @classmethod
    def custom_headers_json(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        try:
            parsed = json.loads(v)
        except json.JSONDecodeError as e:
            raise ValueError(f"CUSTOM_HEADERS must be valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise ValueError("CUSTOM_HEADERS must be a JSON object")
        return v

    @property
    def chats_dir(self) -> Path:
        return Path(self.data_dir) / "chats"

    @property
    def llm_config_path(self) -> Path:
        return Path(self.data_dir) / "llm-config.json"

    def get_allowed_users(self) -> set[str]:
        return {u.strip() for u in self.allowed_users.split(",") if u.strip()}

    def get_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def get_api_key(self, provider: str) -> Optional[str]:
        """API key configured for a provider, or None."""
        return {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "gemini": self.google_api_key,
            "custom": self.custom_api_key,
        }.get(provider)

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Singleton for convenient imports
settings = get_settings()
