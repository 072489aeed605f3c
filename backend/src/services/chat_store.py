"""
Chat Store.

Durable conversation history kept as one JSON file per chat
(``<data_dir>/chats/<chat_id>.json``) with an in-memory working copy.
Mutations can skip the disk write and be checkpointed later with
``persist()``; that is what the streaming path does.
"""
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from src.models.chat import (
    DEFAULT_CHAT_TITLE,
    Chat,
    ChatSummary,
    ChatTurn,
    TurnRole,
    utc_now,
)

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Custom exception for chat persistence errors."""

    def __init__(self, message: str, chat_id: Optional[str] = None):
        self.message = message
        self.chat_id = chat_id
        super().__init__(self.message)


class ChatNotFoundError(StorageError):
    """Raised when operating on a chat that does not exist."""

    def __init__(self, chat_id: str):
        super().__init__(f"Chat not found: {chat_id}", chat_id)


class ChatStore:
    """
    File-backed chat repository.

    Features:
    - Loads every chat file on startup
    - Atomic writes (temp file + rename)
    - Tracks chats whose in-memory state has not reached disk
    """

    def __init__(self, chats_dir: Path, default_model_id: str):
        self.chats_dir = Path(chats_dir)
        self.default_model_id = default_model_id
        self._chats: dict[str, Chat] = {}
        self._dirty: set[str] = set()
        self._load()

    # ==================== Loading ====================

    def _load(self) -> None:
        self.chats_dir.mkdir(parents=True, exist_ok=True)

        for path in sorted(self.chats_dir.glob("*.json")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    chat = Chat.model_validate(json.load(f))
                self._chats[chat.id] = chat
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.warning("Skipping unreadable chat file %s: %s", path.name, e)

        logger.info("Loaded %d chats from %s", len(self._chats), self.chats_dir)

    def _path(self, chat_id: str) -> Path:
        return self.chats_dir / f"{chat_id}.json"

    def _require(self, chat_id: str) -> Chat:
        chat = self._chats.get(chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat

    # ==================== Chats ====================

    def create_chat(
        self,
        user_id: str,
        model_id: Optional[str] = None,
        title: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> Chat:
        """Create and persist a new empty chat."""
        final_model_id = model_id or self.default_model_id
        if not final_model_id:
            raise StorageError(
                "Model ID is required. Select a model or configure DEFAULT_MODEL_ID."
            )

        chat = Chat(
            id=chat_id or str(uuid.uuid4()),
            user_id=user_id,
            title=title or DEFAULT_CHAT_TITLE,
            model_id=final_model_id,
        )
        self._chats[chat.id] = chat
        try:
            self.persist(chat.id)
        except StorageError:
            self._chats.pop(chat.id, None)
            self._dirty.discard(chat.id)
            raise
        return chat

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        return self._chats.get(chat_id)

    def list_chats(self, user_id: str) -> list[Chat]:
        """Chats owned by a user, most recently updated first."""
        chats = [c for c in self._chats.values() if c.user_id == user_id]
        return sorted(chats, key=lambda c: c.updated_at, reverse=True)

    def get_summaries(self, user_id: str) -> list[ChatSummary]:
        return [
            ChatSummary(
                id=c.id,
                title=c.title,
                updated_at=c.updated_at,
                model_id=c.model_id,
            )
            for c in self.list_chats(user_id)
        ]

    def update_chat(
        self,
        chat_id: str,
        title: Optional[str] = None,
        model_id: Optional[str] = None,
        persist: bool = True,
    ) -> Chat:
        """Update chat properties."""
        chat = self._require(chat_id)
        if title is not None:
            chat.title = title
        if model_id is not None:
            chat.model_id = model_id
        chat.updated_at = utc_now()
        self._dirty.add(chat_id)

        if persist:
            self.persist(chat_id)
        return chat

    def delete_chat(self, chat_id: str) -> bool:
        """Delete a chat and its file. Returns False if it did not exist."""
        if chat_id not in self._chats:
            return False
        try:
            self._path(chat_id).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete chat file: {e}", chat_id) from e
        del self._chats[chat_id]
        self._dirty.discard(chat_id)
        return True

    # ==================== Turns ====================

    def append_turn(
        self,
        chat_id: str,
        role: TurnRole,
        content: str,
        turn_id: Optional[str] = None,
        persist: bool = False,
    ) -> ChatTurn:
        """
        Append a turn to a chat.

        Args:
            chat_id: Chat to append to
            role: Author of the turn
            content: Turn text
            turn_id: Pre-assigned id (assistant turns reuse the stream's turn id)
            persist: Write to disk immediately

        Returns:
            Stored turn
        """
        chat = self._require(chat_id)
        now = utc_now()
        turn = ChatTurn(
            id=turn_id or str(uuid.uuid4()),
            role=role,
            content=content,
            created_at=now,
        )
        chat.messages.append(turn)
        chat.updated_at = now
        self._dirty.add(chat_id)

        if persist:
            self.persist(chat_id)
        return turn

    def get_latest_turns(self, chat_id: str, limit: Optional[int] = None) -> list[ChatTurn]:
        """Ordered turns of a chat, optionally only the last ``limit``."""
        chat = self._require(chat_id)
        turns = list(chat.messages)
        if limit is not None:
            turns = turns[-limit:] if limit > 0 else []
        return turns

    def has_turn(self, chat_id: str, turn_id: str) -> bool:
        chat = self._chats.get(chat_id)
        return chat is not None and any(t.id == turn_id for t in chat.messages)

    # ==================== Persistence ====================

    def persist(self, chat_id: str) -> None:
        """
        Write a chat to disk.

        Raises:
            StorageError: if the file could not be written; the chat stays
                marked as unsaved
        """
        chat = self._require(chat_id)
        path = self._path(chat_id)
        tmp_path = path.with_suffix(".json.tmp")

        try:
            self.chats_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(chat.model_dump(by_alias=True), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as e:
            self._dirty.add(chat_id)
            raise StorageError(f"Failed to save chat: {e}", chat_id) from e

        self._dirty.discard(chat_id)

    def is_dirty(self, chat_id: str) -> bool:
        """True if the chat has changes that are not on disk yet."""
        return chat_id in self._dirty
