"""
Stream Registry.

Single source of truth for "is this conversation generating, and what
has it produced so far". Owns every ActiveStream and its broadcast set.

Locking: a short registry-level lock guards the conversation map, and
each ActiveStream carries its own lock for appends, subscriptions and
terminal transitions. Streams of different conversations never contend.
"""
import logging
import threading
from typing import Optional

from .sinks import SinkClosedError, StreamSink
from .types import ActiveStream, StreamEvent, StreamSnapshot, StreamStatus

logger = logging.getLogger(__name__)


class StreamRegistry:
    """
    Registry of active streams keyed by conversation id.

    Constructed once per process and handed to whoever needs it;
    it holds no module-level state.
    """

    def __init__(self):
        self._streams: dict[str, ActiveStream] = {}
        self._lock = threading.Lock()

    def _get(self, conversation_id: str) -> Optional[ActiveStream]:
        with self._lock:
            return self._streams.get(conversation_id)

    def start_stream(self, conversation_id: str, turn_id: str) -> bool:
        """
        Create a new generating stream for a conversation.

        No-op if a stream already exists for it, so a racing request
        cannot start a second generation.

        Returns:
            True if a stream was created, False if one already existed
        """
        with self._lock:
            if conversation_id in self._streams:
                logger.debug(
                    "Stream for %s already active, ignoring start", conversation_id
                )
                return False
            self._streams[conversation_id] = ActiveStream(
                conversation_id=conversation_id,
                turn_id=turn_id,
            )
        logger.info("Started stream %s for conversation %s", turn_id, conversation_id)
        return True

    def append_delta(self, conversation_id: str, text: str) -> None:
        """Append text to a generating stream and broadcast it."""
        stream = self._get(conversation_id)
        if stream is None:
            return
        with stream.lock:
            if not stream.is_generating:
                return
            stream.accumulated_text += text
            self._broadcast(stream, StreamEvent.text(text))

    def subscribe(
        self,
        conversation_id: str,
        sink: StreamSink,
        replay: bool = False,
    ) -> Optional[StreamSnapshot]:
        """
        Attach a sink to a generating stream.

        The snapshot and the subscription are taken under the stream lock,
        so the sink sees exactly the deltas appended after the snapshot.

        Args:
            conversation_id: Conversation to attach to
            sink: Subscriber output channel
            replay: Write an ``init`` event with the snapshot to the sink
                before any later delta

        Returns:
            Snapshot of the stream, or None if nothing is generating
        """
        stream = self._get(conversation_id)
        if stream is None:
            return None
        with stream.lock:
            if not stream.is_generating:
                return None
            if replay:
                try:
                    sink.send(
                        StreamEvent.init(
                            stream.turn_id,
                            stream.accumulated_text,
                            conversation_id,
                        )
                    )
                except SinkClosedError:
                    logger.debug("Sink closed before replay for %s", conversation_id)
                    return None
            stream.subscribers.add(sink)
            snapshot = stream.snapshot()

        logger.debug(
            "Subscriber attached to %s (%d chars so far)",
            conversation_id,
            len(snapshot.accumulated_text),
        )
        return snapshot

    def unsubscribe(self, conversation_id: str, sink: StreamSink) -> None:
        """Detach a sink. Safe to repeat or call after the stream ended."""
        stream = self._get(conversation_id)
        if stream is None:
            return
        with stream.lock:
            stream.subscribers.discard(sink)

    def complete_stream(self, conversation_id: str) -> str:
        """
        Finish a stream successfully.

        Broadcasts ``done``, closes every subscriber and removes the stream.

        Returns:
            Final accumulated text, or "" if no stream was generating
        """
        return self._finish(conversation_id, StreamStatus.COMPLETED)

    def fail_stream(self, conversation_id: str, reason: str) -> str:
        """
        Finish a stream with an error.

        Broadcasts ``error``, closes every subscriber and removes the stream.

        Returns:
            Text accumulated before the failure, or "" if no stream was generating
        """
        return self._finish(conversation_id, StreamStatus.FAILED, reason)

    def has_active_stream(self, conversation_id: str) -> bool:
        stream = self._get(conversation_id)
        return stream is not None and stream.is_generating

    def get_snapshot(self, conversation_id: str) -> Optional[StreamSnapshot]:
        """Read-only view of a generating stream, without subscribing."""
        stream = self._get(conversation_id)
        if stream is None:
            return None
        with stream.lock:
            if not stream.is_generating:
                return None
            return stream.snapshot()

    @property
    def active_count(self) -> int:
        """Number of conversations currently generating."""
        with self._lock:
            return len(self._streams)

    def _finish(
        self,
        conversation_id: str,
        status: StreamStatus,
        reason: Optional[str] = None,
    ) -> str:
        stream = self._get(conversation_id)
        if stream is None:
            return ""

        with stream.lock:
            if not stream.is_generating:
                return ""
            stream.status = status
            if status is StreamStatus.FAILED:
                stream.failure_reason = reason
                self._broadcast(stream, StreamEvent.error(reason or "Unknown error"))
            else:
                self._broadcast(stream, StreamEvent.done(stream.turn_id))

            subscribers = list(stream.subscribers)
            stream.subscribers.clear()
            text = stream.accumulated_text

        for sink in subscribers:
            self._close_sink(sink)

        with self._lock:
            if self._streams.get(conversation_id) is stream:
                del self._streams[conversation_id]

        if status is StreamStatus.FAILED:
            logger.warning(
                "Stream %s for %s failed after %d chars: %s",
                stream.turn_id,
                conversation_id,
                len(text),
                reason,
            )
        else:
            logger.info(
                "Stream %s for %s completed, %d chars, %d subscribers closed",
                stream.turn_id,
                conversation_id,
                len(text),
                len(subscribers),
            )
        return text

    def _broadcast(self, stream: ActiveStream, event: StreamEvent) -> None:
        """Write an event to every subscriber, dropping the ones that fail."""
        dead = []
        for sink in stream.subscribers:
            try:
                sink.send(event)
            except Exception as e:
                logger.debug(
                    "Dropping subscriber of %s: %s", stream.conversation_id, e
                )
                dead.append(sink)

        for sink in dead:
            stream.subscribers.discard(sink)
            self._close_sink(sink)

    @staticmethod
    def _close_sink(sink: StreamSink) -> None:
        try:
            sink.close()
        except Exception as e:
            logger.debug("Ignoring error while closing subscriber: %s", e)
