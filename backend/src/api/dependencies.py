"""
Application services and FastAPI dependencies.

Services are built once in the app lifespan and kept on ``app.state``;
routes receive them through the dependencies below.
"""
import logging
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request

from src.ai.prompts import build_system_prompt
from src.ai.registry import ProviderRegistry
from src.config import Settings
from src.config_loader import load_model_catalog
from src.services.chat import ChatService
from src.services.chat_store import ChatStore
from src.services.llm_config import LLMConfigStore
from src.services.streaming import StreamingOrchestrator, StreamRegistry

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Process-wide services, constructed once at startup."""

    settings: Settings
    store: ChatStore
    registry: StreamRegistry
    providers: ProviderRegistry
    orchestrator: StreamingOrchestrator
    chats: ChatService


def build_services(
    settings: Settings,
    providers: Optional[ProviderRegistry] = None,
) -> AppServices:
    """Wire the store, stream registry, providers and orchestrator together."""
    store = ChatStore(settings.chats_dir, settings.default_model_id)
    registry = StreamRegistry()
    if providers is None:
        providers = ProviderRegistry(
            settings,
            load_model_catalog(settings.models_config_path),
            LLMConfigStore(settings.llm_config_path),
        )
    orchestrator = StreamingOrchestrator(
        registry,
        store,
        providers,
        system_prompt=build_system_prompt(settings.system_prompt),
    )
    return AppServices(
        settings=settings,
        store=store,
        registry=registry,
        providers=providers,
        orchestrator=orchestrator,
        chats=ChatService(store, orchestrator),
    )


def get_services(request: Request) -> AppServices:
    """Get application services from application state."""
    return request.app.state.services


def get_chat_service(services: Annotated[AppServices, Depends(get_services)]) -> ChatService:
    return services.chats


def get_settings_dep(services: Annotated[AppServices, Depends(get_services)]) -> Settings:
    return services.settings


def get_current_user(
    settings: Annotated[Settings, Depends(get_settings_dep)],
    authorization: Annotated[Optional[str], Header()] = None,
) -> str:
    """
    Resolve the calling user from the Authorization header.

    The header carries the user id; when ``allowed_users`` is configured
    only those ids are accepted.
    """
    user_id = (authorization or "").strip()
    if user_id.lower().startswith("bearer "):
        user_id = user_id[7:].strip()

    allowed = settings.get_allowed_users()
    if not user_id or (allowed and user_id not in allowed):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


# Type aliases for cleaner route signatures
Services = Annotated[AppServices, Depends(get_services)]
Chats = Annotated[ChatService, Depends(get_chat_service)]
CurrentUser = Annotated[str, Depends(get_current_user)]
