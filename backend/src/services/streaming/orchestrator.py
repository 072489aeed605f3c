"""
Streaming Orchestrator.

Drives one LLM generation from registry start to persisted assistant turn,
and implements the resume protocol for reconnecting clients.
Single Responsibility: only coordination; broadcasting belongs to the
registry, completions to the provider adapter, durability to the store.
"""
import asyncio
import logging
import uuid
from enum import Enum
from typing import Optional, Protocol, Sequence

from src.ai.provider import CompletionProvider, HistoryTurn
from src.models.chat import DEFAULT_CHAT_TITLE, Chat, TurnRole
from src.services.chat_store import ChatStore, StorageError

from .registry import StreamRegistry
from .sinks import SinkClosedError, StreamSink
from .types import StreamEvent

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50


class ProviderResolver(Protocol):
    """Protocol for finding the adapter that serves a model."""

    def for_model(self, model_id: str) -> CompletionProvider: ...


class ResumeOutcome(str, Enum):
    """Result of a continue request without new user text."""

    ATTACHED = "attached"  # joined a generation already in flight
    STARTED = "started"  # pending user turn, new generation launched
    IDLE = "idle"  # last turn already answered


def generate_chat_title(first_message: str) -> str:
    """Chat title from the first user message, collapsed and truncated."""
    cleaned = " ".join(first_message.split())
    if len(cleaned) <= TITLE_MAX_LENGTH:
        return cleaned
    return cleaned[: TITLE_MAX_LENGTH - 3] + "..."


class StreamingOrchestrator:
    """
    Orchestrates LLM generations over the stream registry.

    Workflow:
    1. Register the active stream and greet the initiating sink
    2. Subscribe that sink like any other subscriber
    3. Feed provider deltas into the registry
    4. Complete or fail the stream, then persist the assistant turn

    Generations started with ``launch`` run as background tasks owned by
    the orchestrator, so a client disconnect never cancels a provider call.
    """

    def __init__(
        self,
        registry: StreamRegistry,
        store: ChatStore,
        providers: ProviderResolver,
        system_prompt: Optional[str] = None,
    ):
        self._registry = registry
        self._store = store
        self._providers = providers
        self._system_prompt = system_prompt
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def registry(self) -> StreamRegistry:
        return self._registry

    def is_active(self, conversation_id: str) -> bool:
        """Check if a generation is running for the conversation."""
        return self._registry.has_active_stream(conversation_id)

    @property
    def active_count(self) -> int:
        """Number of background generations still running."""
        return len(self._tasks)

    async def run(
        self,
        conversation_id: str,
        history: Sequence[HistoryTurn],
        model_id: str,
        system_prompt: Optional[str] = None,
        turn_id: Optional[str] = None,
        sink: Optional[StreamSink] = None,
    ) -> None:
        """
        Run a generation to completion in the current task.

        If the conversation is already generating, ``sink`` is attached
        to that generation instead and no provider call is made.
        """
        turn_id = turn_id or str(uuid.uuid4())
        if not self._open(conversation_id, turn_id, sink):
            return
        await self._generate(conversation_id, history, model_id, system_prompt, turn_id)

    def launch(
        self,
        conversation_id: str,
        history: Sequence[HistoryTurn],
        model_id: str,
        system_prompt: Optional[str] = None,
        turn_id: Optional[str] = None,
        sink: Optional[StreamSink] = None,
    ) -> Optional[asyncio.Task]:
        """
        Start a generation in a background task.

        The stream is registered and ``sink`` subscribed before this
        returns, so ``is_active`` is immediately true.

        Returns:
            The generation task, or None if the conversation was already
            generating (``sink`` joined that generation)
        """
        turn_id = turn_id or str(uuid.uuid4())
        if not self._open(conversation_id, turn_id, sink):
            return None

        task = asyncio.create_task(
            self._generate(conversation_id, history, model_id, system_prompt, turn_id),
            name=f"stream-{conversation_id}",
        )
        self._tasks[conversation_id] = task
        task.add_done_callback(lambda t: self._forget_task(conversation_id, t))
        return task

    def resume(
        self,
        chat: Chat,
        sink: StreamSink,
        model_id: Optional[str] = None,
    ) -> ResumeOutcome:
        """
        Continue a conversation without new user text.

        - Generation in flight: attach and replay what it produced so far
        - Last stored turn is an unanswered user turn: start a generation
        - Otherwise: nothing to do
        """
        if self._registry.subscribe(chat.id, sink, replay=True) is not None:
            logger.info("Subscriber resumed active stream for %s", chat.id)
            return ResumeOutcome.ATTACHED

        if chat.has_pending_user_turn():
            logger.info("Resuming pending user turn for %s", chat.id)
            task = self.launch(
                chat.id,
                self._store.get_latest_turns(chat.id),
                model_id or chat.model_id,
                sink=sink,
            )
            if task is None:
                # A racing request started it first; the sink joined that one
                return ResumeOutcome.ATTACHED
            return ResumeOutcome.STARTED

        return ResumeOutcome.IDLE

    async def shutdown(self) -> None:
        """Cancel running generations; partial output is persisted."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d running generations", len(tasks))

    def _forget_task(self, conversation_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(conversation_id) is task:
            del self._tasks[conversation_id]

    def _open(
        self,
        conversation_id: str,
        turn_id: str,
        sink: Optional[StreamSink],
    ) -> bool:
        """
        Register the stream and attach the initiating sink.

        Returns:
            True if this call owns a new generation
        """
        if not self._registry.start_stream(conversation_id, turn_id):
            logger.warning(
                "Stream for %s already active, joining instead of starting",
                conversation_id,
            )
            if sink is not None and self._registry.subscribe(
                conversation_id, sink, replay=True
            ) is None:
                sink.close()
            return False

        if sink is not None:
            try:
                sink.send(StreamEvent.connected(turn_id))
            except SinkClosedError:
                logger.debug("Initiating sink for %s closed early", conversation_id)
            else:
                self._registry.subscribe(conversation_id, sink)
        return True

    async def _generate(
        self,
        conversation_id: str,
        history: Sequence[HistoryTurn],
        model_id: str,
        system_prompt: Optional[str],
        turn_id: str,
    ) -> None:
        """
        Execute the generation pipeline.

        Steps:
        1. Pull deltas from the provider into the registry
        2. On exhaustion, complete the stream and save the answer
        3. On error, fail the stream and save whatever was produced
        """
        prompt = system_prompt if system_prompt is not None else self._system_prompt

        try:
            provider = self._providers.for_model(model_id)
            async for text in provider.stream_completion(history, model_id, prompt):
                self._registry.append_delta(conversation_id, text)

        except asyncio.CancelledError:
            partial = self._registry.fail_stream(conversation_id, "Generation cancelled")
            self._save_answer(conversation_id, turn_id, partial)
            raise

        except Exception as e:
            logger.exception("Stream %s for %s failed: %s", turn_id, conversation_id, e)
            reason = getattr(e, "message", None) or str(e) or "Unknown error occurred"
            partial = self._registry.fail_stream(conversation_id, reason)
            self._save_answer(conversation_id, turn_id, partial)
            return

        final_text = self._registry.complete_stream(conversation_id)
        self._save_answer(
            conversation_id,
            turn_id,
            final_text,
            completed=True,
            first_message=self._first_user_message(history),
        )

    def _save_answer(
        self,
        conversation_id: str,
        turn_id: str,
        text: str,
        completed: bool = False,
        first_message: Optional[str] = None,
    ) -> None:
        """
        Append the assistant turn and persist the chat.

        Failed generations are saved only when they produced text.
        Storage errors are logged; the chat stays usable from memory.
        """
        if not completed and not text:
            return
        if self._store.has_turn(conversation_id, turn_id):
            logger.warning("Turn %s already stored for %s", turn_id, conversation_id)
            return

        try:
            self._store.append_turn(
                conversation_id,
                TurnRole.ASSISTANT,
                text,
                turn_id=turn_id,
            )

            chat = self._store.get_chat(conversation_id)
            if completed and first_message and chat and chat.title == DEFAULT_CHAT_TITLE:
                self._store.update_chat(
                    conversation_id,
                    title=generate_chat_title(first_message),
                    persist=False,
                )

            self._store.persist(conversation_id)

        except StorageError as e:
            logger.warning(
                "Could not save turn %s for %s (kept in memory): %s",
                turn_id,
                conversation_id,
                e.message,
            )

    @staticmethod
    def _first_user_message(history: Sequence[HistoryTurn]) -> Optional[str]:
        for turn in history:
            if turn.role == "user":
                return turn.content
        return None
