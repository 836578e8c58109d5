"""
Streaming completion relay.
Orchestrates chat turns and frames their events for the client.
"""

from relay.events import StartEvent, DeltaEvent, DoneEvent, ErrorEvent, StreamEvent
from relay.orchestrator import RelayOrchestrator, Turn, wait_for_background_tasks
from relay.transport import (
    SSEDecoder,
    encode_event,
    event_stream_response,
    iter_stream_events,
    parse_stream_event,
)

__all__ = [
    "StartEvent",
    "DeltaEvent",
    "DoneEvent",
    "ErrorEvent",
    "StreamEvent",
    "RelayOrchestrator",
    "Turn",
    "wait_for_background_tasks",
    "SSEDecoder",
    "encode_event",
    "event_stream_response",
    "iter_stream_events",
    "parse_stream_event",
]
