"""
Server-sent event framing for streaming turns.

Server side: every StreamEvent becomes one frame

    event: <name>
    data: <json payload>
    <blank line>

written onto a long-lived StreamingResponse whose headers turn off proxy
buffering (nginx honours X-Accel-Buffering).

Client side: SSEDecoder is fed raw bytes as they arrive, in whatever
pieces the network delivers, and hands back complete frames only. A frame
split across reads (even in the middle of a UTF-8 sequence) is held until
its terminating blank line shows up.
"""

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional

from fastapi.responses import StreamingResponse

from models.message import TokenUsage
from relay.events import DeltaEvent, DoneEvent, ErrorEvent, StartEvent, StreamEvent

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ============================================================
# Encoding (server)
# ============================================================

def encode_event(event: StreamEvent) -> str:
    """Render one event as a self-delimited SSE frame."""
    data = json.dumps(event.payload(), ensure_ascii=False)
    return f"event: {event.name}\ndata: {data}\n\n"


async def encode_events(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    """Encode an event stream frame by frame.

    The source iterator is always closed on the way out, so a client
    disconnect that tears down this generator also tears down the relay
    (and with it the provider connection).
    """
    try:
        async for event in events:
            yield encode_event(event)
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()


def event_stream_response(events: AsyncIterator[StreamEvent]) -> StreamingResponse:
    """Wrap a relay event stream in an HTTP 200 streaming response."""
    return StreamingResponse(
        encode_events(events),
        media_type=SSE_MEDIA_TYPE,
        headers=dict(SSE_HEADERS),
    )


# ============================================================
# Decoding (client)
# ============================================================

@dataclass
class ServerSentEvent:
    """A complete decoded frame: event name plus raw data text."""
    event: str
    data: str

    def json(self) -> Any:
        return json.loads(self.data)


class SSEDecoder:
    """Incremental SSE frame decoder.

    Usage:
        decoder = SSEDecoder()
        async for chunk in response.aiter_bytes():
            for frame in decoder.feed(chunk):
                ...
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._event: Optional[str] = None
        self._data: List[str] = []

    def feed(self, chunk: bytes) -> List[ServerSentEvent]:
        """Consume raw bytes; return every frame they complete."""
        self._buffer += self._decoder.decode(chunk)
        return self._drain()

    def flush(self) -> List[ServerSentEvent]:
        """Signal end of input. A trailing frame without its blank line is dropped."""
        self._buffer += self._decoder.decode(b"", final=True)
        frames = self._drain()
        if self._buffer or self._event or self._data:
            logger.debug("Discarding incomplete SSE frame at end of stream")
        self._buffer = ""
        self._event = None
        self._data = []
        return frames

    def _drain(self) -> List[ServerSentEvent]:
        frames: List[ServerSentEvent] = []
        while True:
            line = self._next_line()
            if line is None:
                return frames
            frame = self._process_line(line)
            if frame is not None:
                frames.append(frame)

    def _next_line(self) -> Optional[str]:
        """Pop one complete line off the buffer, or None if none is complete."""
        for i, ch in enumerate(self._buffer):
            if ch == "\n":
                line, self._buffer = self._buffer[:i], self._buffer[i + 1:]
                return line
            if ch == "\r":
                # A lone \r at the end may be the first half of \r\n
                if i + 1 == len(self._buffer):
                    return None
                skip = 2 if self._buffer[i + 1] == "\n" else 1
                line, self._buffer = self._buffer[:i], self._buffer[i + skip:]
                return line
        return None

    def _process_line(self, line: str) -> Optional[ServerSentEvent]:
        if line == "":
            if self._event is None and not self._data:
                return None
            frame = ServerSentEvent(event=self._event or "message", data="\n".join(self._data))
            self._event = None
            self._data = []
            return frame

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        return None


def parse_stream_event(frame: ServerSentEvent) -> Optional[StreamEvent]:
    """Turn a decoded frame into a typed StreamEvent.

    Unknown events and malformed payloads give None so one bad frame never
    ends the stream for the consumer.
    """
    try:
        data: Dict[str, Any] = frame.json()
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse SSE data for event '{frame.event}'")
        return None

    try:
        return _typed_event(frame.event, data)
    except (KeyError, TypeError, AttributeError, ValueError) as e:
        logger.warning(f"Malformed payload for SSE event '{frame.event}': {e!r}")
        return None


def _typed_event(name: str, data: Dict[str, Any]) -> Optional[StreamEvent]:
    if name == "start":
        return StartEvent(message_id=data["messageId"], session_id=data["sessionId"])
    if name == "delta":
        return DeltaEvent(content=data["content"], index=data["index"])
    if name == "done":
        usage = data.get("usage") or {}
        return DoneEvent(
            message_id=data["messageId"],
            usage=TokenUsage(
                prompt_tokens=usage.get("promptTokens", 0),
                completion_tokens=usage.get("completionTokens", 0),
            ),
        )
    if name == "error":
        return ErrorEvent(code=data.get("code", "STREAM_ERROR"), message=data.get("message", ""))
    return None


async def iter_stream_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Decode a byte stream into typed events as soon as each frame completes."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            event = parse_stream_event(frame)
            if event is not None:
                yield event
    for frame in decoder.flush():
        event = parse_stream_event(frame)
        if event is not None:
            yield event
