"""
Chat and turn models.

Stored on disk and returned by the API with camelCase keys.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_CHAT_TITLE = "New Chat"


def utc_now() -> str:
    """Current time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        protected_namespaces=(),
    )


class ChatTurn(CamelModel):
    """One message in a conversation."""

    id: str
    role: TurnRole
    content: str
    created_at: str = Field(default_factory=utc_now)


class Chat(CamelModel):
    """Conversation with its full turn history."""

    id: str
    user_id: str
    title: str = DEFAULT_CHAT_TITLE
    model_id: str
    messages: list[ChatTurn] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    @property
    def last_turn(self) -> Optional[ChatTurn]:
        return self.messages[-1] if self.messages else None

    def has_pending_user_turn(self) -> bool:
        """True when the latest turn is a user message with no answer yet."""
        last = self.last_turn
        return last is not None and last.role == TurnRole.USER


class ChatSummary(CamelModel):
    """Chat without its message history."""

    id: str
    title: str
    updated_at: str
    model_id: str
