"""
Streaming Services Module.

Provides the active-stream broadcast and reconnection infrastructure.

Architecture:
- StreamRegistry: Owns active streams and their subscriber sets
- QueueSink: Output channel of one client connection
- StreamingOrchestrator: Drives a generation and the resume protocol

Usage:
    from src.services.streaming import (
        StreamRegistry,
        StreamingOrchestrator,
        QueueSink,
    )

    registry = StreamRegistry()
    orchestrator = StreamingOrchestrator(registry, store, providers)
    orchestrator.launch(chat_id, history, model_id, sink=QueueSink())
"""

from .types import (
    ActiveStream,
    StreamEvent,
    StreamEventType,
    StreamSnapshot,
    StreamStatus,
)
from .sinks import QueueSink, SinkClosedError, StreamSink
from .registry import StreamRegistry
from .orchestrator import (
    ResumeOutcome,
    StreamingOrchestrator,
    generate_chat_title,
)

__all__ = [
    # Types
    "ActiveStream",
    "StreamEvent",
    "StreamEventType",
    "StreamSnapshot",
    "StreamStatus",
    # Sinks
    "QueueSink",
    "SinkClosedError",
    "StreamSink",
    # Services
    "StreamRegistry",
    "StreamingOrchestrator",
    "ResumeOutcome",
    "generate_chat_title",
]
