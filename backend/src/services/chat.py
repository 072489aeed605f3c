"""
Chat Service.

Business logic for chat operations: ownership checks, chat CRUD and
entry points into streaming (new message / continue).
"""
import logging
from typing import Optional

from src.models.chat import Chat, ChatSummary, TurnRole
from src.services.chat_store import ChatStore, StorageError
from src.services.streaming import (
    ResumeOutcome,
    StreamingOrchestrator,
    StreamSink,
)

logger = logging.getLogger(__name__)


class ChatError(Exception):
    """Custom exception for chat operations, carries an HTTP status."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ChatService:
    """
    Service for chats owned by users.

    Responsibilities:
    1. Validate ownership before touching a chat
    2. CRUD over the chat store
    3. Append user turns and hand generations to the orchestrator
    """

    def __init__(self, store: ChatStore, orchestrator: StreamingOrchestrator):
        self._store = store
        self._orchestrator = orchestrator

    def create_chat(self, user_id: str, model_id: Optional[str] = None) -> Chat:
        if not user_id:
            raise ChatError("User ID is required", 400)
        try:
            chat = self._store.create_chat(user_id, model_id)
        except StorageError as e:
            raise ChatError(e.message, 500) from e
        logger.info("Created chat %s for user %s", chat.id, user_id)
        return chat

    def get_chat(self, user_id: str, chat_id: str) -> Chat:
        """
        Get a chat by ID with ownership validation.

        Raises:
            ChatError: 404 if missing, 403 if owned by another user
        """
        if not user_id:
            raise ChatError("User ID is required", 400)
        if not chat_id:
            raise ChatError("Chat ID is required", 400)

        chat = self._store.get_chat(chat_id)
        if chat is None:
            raise ChatError("Chat not found", 404)
        if chat.user_id != user_id:
            raise ChatError("Unauthorized: Chat does not belong to user", 403)
        return chat

    def list_chats(self, user_id: str) -> list[ChatSummary]:
        if not user_id:
            raise ChatError("User ID is required", 400)
        return self._store.get_summaries(user_id)

    def update_title(self, user_id: str, chat_id: str, title: str) -> Chat:
        self.get_chat(user_id, chat_id)
        title = title.strip()
        if not title:
            raise ChatError("Title cannot be empty", 400)
        try:
            return self._store.update_chat(chat_id, title=title)
        except StorageError as e:
            raise ChatError(e.message, 500) from e

    def delete_chat(self, user_id: str, chat_id: str) -> None:
        self.get_chat(user_id, chat_id)
        if self._orchestrator.is_active(chat_id):
            raise ChatError("Cannot delete a chat while a response is being generated", 409)
        try:
            self._store.delete_chat(chat_id)
        except StorageError as e:
            raise ChatError(e.message, 500) from e
        logger.info("Deleted chat %s", chat_id)

    def is_unsaved(self, chat_id: str) -> bool:
        return self._store.is_dirty(chat_id)

    def send_message(
        self,
        user_id: str,
        chat_id: str,
        message: str,
        sink: StreamSink,
        model_id: Optional[str] = None,
    ) -> None:
        """
        Append a user turn and start generating the answer.

        The user turn is persisted before generation starts so a crash
        leaves a pending turn that a later continue request picks up.

        Raises:
            ChatError: 400 for an empty message, 409 if a generation is running
        """
        chat = self.get_chat(user_id, chat_id)
        content = message.strip()
        if not content:
            raise ChatError("Message is required", 400)
        if self._orchestrator.is_active(chat_id):
            raise ChatError("A response is already being generated for this chat", 409)

        self._store.append_turn(chat_id, TurnRole.USER, content)
        try:
            self._store.persist(chat_id)
        except StorageError as e:
            logger.warning("Could not save user turn for %s: %s", chat_id, e.message)

        self._orchestrator.launch(
            chat_id,
            self._store.get_latest_turns(chat_id),
            model_id or chat.model_id,
            sink=sink,
        )

    def continue_chat(
        self,
        user_id: str,
        chat_id: str,
        sink: StreamSink,
        model_id: Optional[str] = None,
    ) -> ResumeOutcome:
        """Reattach to or restart a generation, see StreamingOrchestrator.resume."""
        chat = self.get_chat(user_id, chat_id)
        return self._orchestrator.resume(chat, sink, model_id)
