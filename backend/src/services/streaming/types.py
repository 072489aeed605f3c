"""
Streaming Types.

Data structures for active LLM streams and the events broadcast to clients.
Events and snapshots are immutable; ActiveStream is the mutable record
owned by the StreamRegistry.
"""
import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class StreamStatus(str, Enum):
    """Lifecycle of an active stream."""

    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class StreamEventType(str, Enum):
    """Event types of the client-facing SSE protocol."""

    CONNECTED = "connected"
    INIT = "init"
    TEXT = "text"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    """
    Single event sent to a subscriber.

    Attributes:
        type: Event type
        data: Event payload (camelCase keys, as sent on the wire)
    """

    type: StreamEventType
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def connected(cls, turn_id: str) -> "StreamEvent":
        return cls(StreamEventType.CONNECTED, {"messageId": turn_id})

    @classmethod
    def init(cls, turn_id: str, content: str, chat_id: str) -> "StreamEvent":
        return cls(
            StreamEventType.INIT,
            {"messageId": turn_id, "content": content, "chatId": chat_id},
        )

    @classmethod
    def text(cls, content: str) -> "StreamEvent":
        return cls(StreamEventType.TEXT, {"content": content})

    @classmethod
    def done(cls, turn_id: str) -> "StreamEvent":
        return cls(StreamEventType.DONE, {"messageId": turn_id})

    @classmethod
    def error(cls, reason: str) -> "StreamEvent":
        return cls(StreamEventType.ERROR, {"error": reason})

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, **self.data}

    def to_sse(self) -> str:
        """Serialize as a Server-Sent Events frame."""
        return f"data: {json.dumps(self.to_dict())}\n\n"


@dataclass(frozen=True)
class StreamSnapshot:
    """
    Point-in-time view of an active stream.

    Returned to a subscriber when it attaches so it can catch up
    before receiving live deltas.
    """

    conversation_id: str
    turn_id: str
    accumulated_text: str
    status: StreamStatus


@dataclass(eq=False)
class ActiveStream:
    """
    Mutable state of one in-flight generation.

    All mutation happens under ``lock``; the subscriber set is transient
    and never persisted.
    """

    conversation_id: str
    turn_id: str
    accumulated_text: str = ""
    status: StreamStatus = StreamStatus.GENERATING
    failure_reason: Optional[str] = None
    subscribers: set = field(default_factory=set)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_generating(self) -> bool:
        return self.status is StreamStatus.GENERATING

    def snapshot(self) -> StreamSnapshot:
        return StreamSnapshot(
            conversation_id=self.conversation_id,
            turn_id=self.turn_id,
            accumulated_text=self.accumulated_text,
            status=self.status,
        )
