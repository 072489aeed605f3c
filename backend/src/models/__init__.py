"""Models package for the chat backend."""

from src.models.chat import (
    DEFAULT_CHAT_TITLE,
    Chat,
    ChatSummary,
    ChatTurn,
    TurnRole,
)

__all__ = [
    "DEFAULT_CHAT_TITLE",
    "Chat",
    "ChatSummary",
    "ChatTurn",
    "TurnRole",
]
