"""
LLM provider adapter.

Wraps a vendor's streaming completion API behind a uniform
"async sequence of text deltas" contract, using PydanticAI agents.
"""
import logging
from typing import AsyncIterator, Callable, Optional, Protocol, Sequence

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when a completion cannot be produced."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model_id: Optional[str] = None,
    ):
        self.message = message
        self.provider = provider
        self.model_id = model_id
        super().__init__(self.message)


class HistoryTurn(Protocol):
    """Anything with a role and text, e.g. ChatTurn."""

    role: str
    content: str


class CompletionProvider(Protocol):
    """Protocol for streaming completion adapters."""

    def stream_completion(
        self,
        history: Sequence[HistoryTurn],
        model_id: str,
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[str]: ...


def to_model_messages(history: Sequence[HistoryTurn]) -> tuple[str, list[ModelMessage]]:
    """
    Split stored turns into a prompt and PydanticAI message history.

    The last turn must be a user turn; it becomes the prompt and
    everything before it becomes message history.

    Raises:
        ProviderError: if the history is empty or does not end with a user turn
    """
    if not history or history[-1].role != "user":
        raise ProviderError("Conversation must end with a user message")

    messages: list[ModelMessage] = []
    for turn in history[:-1]:
        if turn.role == "user":
            messages.append(ModelRequest(parts=[UserPromptPart(content=turn.content)]))
        else:
            messages.append(ModelResponse(parts=[TextPart(content=turn.content)]))

    return history[-1].content, messages


class LLMProvider:
    """
    Streaming completion adapter for one provider.

    The model factory turns a model id into a configured PydanticAI
    model (API key, base URL, headers); the adapter itself only knows
    how to run a text-only streaming agent.
    """

    def __init__(
        self,
        provider_type: str,
        model_factory: Callable[[str], Model],
        max_tokens: int = 4096,
    ):
        self.provider_type = provider_type
        self._model_factory = model_factory
        self._max_tokens = max_tokens

    async def stream_completion(
        self,
        history: Sequence[HistoryTurn],
        model_id: str,
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Stream completion text from the LLM.

        Yields:
            Text deltas in the order the model produced them

        Raises:
            ProviderError: on any upstream failure; deltas already yielded
                remain valid
        """
        prompt, message_history = to_model_messages(history)

        try:
            agent: Agent[None, str] = Agent(
                model=self._model_factory(model_id),
                instructions=system_prompt,
            )

            logger.info(
                "Streaming completion from %s model %s (%d prior turns)",
                self.provider_type,
                model_id,
                len(message_history),
            )

            async with agent.run_stream(
                prompt,
                message_history=message_history,
                model_settings={"max_tokens": self._max_tokens},
            ) as result:
                async for delta in result.stream_text(delta=True, debounce_by=None):
                    if delta:
                        yield delta

        except ProviderError:
            raise
        except Exception as e:
            logger.warning(
                "Completion from %s model %s failed: %s",
                self.provider_type,
                model_id,
                e,
            )
            raise ProviderError(
                str(e) or e.__class__.__name__,
                provider=self.provider_type,
                model_id=model_id,
            ) from e
