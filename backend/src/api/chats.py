"""
Chats API endpoints.

Streaming endpoint:
- POST /chats/{id}/stream {"message": "..."} - send a message and stream the answer
- POST /chats/{id}/stream {}                 - continue: reattach to a running
  generation, or answer a pending user turn

Outgoing SSE events (``data: {...}``):
- {"type": "connected", "messageId": "..."} - generation started
- {"type": "init", "messageId": "...", "content": "...", "chatId": "..."} - resumed, text so far
- {"type": "text", "content": "..."} - text delta
- {"type": "done", "messageId": "..."} - generation finished
- {"type": "error", "error": "..."} - generation failed
"""
import logging
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, Response
from fastapi.responses import StreamingResponse

from src.api.dependencies import Chats, CurrentUser, Services
from src.models.chat import CamelModel, ChatSummary
from src.services.streaming import QueueSink, ResumeOutcome, StreamRegistry

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chats", tags=["chats"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class CreateChatRequest(CamelModel):
    """Request for creating a chat."""

    model_id: Optional[str] = None


class CreateChatResponse(CamelModel):
    id: str


class ChatListResponse(CamelModel):
    chats: list[ChatSummary]


class UpdateChatRequest(CamelModel):
    title: str


class StreamChatRequest(CamelModel):
    """Request for the streaming endpoint. No message means continue."""

    message: Optional[str] = None
    model_id: Optional[str] = None


async def _event_stream(
    registry: StreamRegistry,
    chat_id: str,
    sink: QueueSink,
) -> AsyncIterator[str]:
    """Drain a sink as SSE frames; detach it when the client goes away."""
    try:
        async for frame in sink.sse():
            yield frame
    finally:
        registry.unsubscribe(chat_id, sink)
        sink.close()
        logger.debug("SSE connection for %s closed", chat_id)


@router.get("", response_model=ChatListResponse)
async def list_chats(user_id: CurrentUser, chats: Chats) -> ChatListResponse:
    """List the user's chats, most recent first."""
    return ChatListResponse(chats=chats.list_chats(user_id))


@router.post(
    "",
    status_code=201,
    response_model=CreateChatResponse,
)
async def create_chat(
    user_id: CurrentUser,
    chats: Chats,
    request: Optional[CreateChatRequest] = None,
) -> CreateChatResponse:
    """Create an empty chat."""
    model_id = request.model_id if request else None
    chat = chats.create_chat(user_id, model_id)
    return CreateChatResponse(id=chat.id)


@router.get("/{chat_id}")
async def get_chat(chat_id: str, user_id: CurrentUser, services: Services) -> dict[str, Any]:
    """
    Get a chat with its message history.

    ``streamStatus``/``partialContent`` describe a generation in flight;
    ``unsaved`` flags changes that could not be written to disk.
    """
    chat = services.chats.get_chat(user_id, chat_id)
    snapshot = services.registry.get_snapshot(chat_id)

    return {
        **chat.model_dump(by_alias=True),
        "streamStatus": "active" if snapshot else None,
        "partialContent": snapshot.accumulated_text if snapshot else None,
        "unsaved": services.chats.is_unsaved(chat_id),
    }


@router.patch("/{chat_id}")
async def update_chat(
    chat_id: str,
    request: UpdateChatRequest,
    user_id: CurrentUser,
    chats: Chats,
) -> dict[str, Any]:
    """Rename a chat."""
    chat = chats.update_title(user_id, chat_id, request.title)
    return chat.model_dump(by_alias=True)


@router.delete("/{chat_id}", status_code=204)
async def delete_chat(chat_id: str, user_id: CurrentUser, chats: Chats) -> Response:
    """Delete a chat."""
    chats.delete_chat(user_id, chat_id)
    return Response(status_code=204)


@router.post("/{chat_id}/stream")
async def stream_chat(
    chat_id: str,
    user_id: CurrentUser,
    services: Services,
    request: Optional[StreamChatRequest] = None,
) -> Response:
    """
    Send a message or continue a chat, streaming events over SSE.

    The generation is not tied to this connection: disconnecting only
    unsubscribes, and a later continue request picks the stream up again.
    Answers 204 when there is nothing to continue.
    """
    request = request or StreamChatRequest()
    sink = QueueSink(
        max_pending=services.settings.subscriber_queue_size,
        name=f"sse-{chat_id}",
    )

    if request.message is not None:
        services.chats.send_message(
            user_id, chat_id, request.message, sink, request.model_id
        )
    else:
        outcome = services.chats.continue_chat(user_id, chat_id, sink, request.model_id)
        logger.info("Continue request for %s: %s", chat_id, outcome.value)
        if outcome is ResumeOutcome.IDLE:
            return Response(status_code=204)

    return StreamingResponse(
        _event_stream(services.registry, chat_id, sink),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
