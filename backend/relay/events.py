"""
Stream events exchanged during one streaming turn.

Order on the wire is always:
    start, delta(index=0), delta(index=1), ..., done | error
and nothing follows the terminal event. Events are never persisted.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union

from models.message import TokenUsage


@dataclass(frozen=True)
class StartEvent:
    """Carries the persisted user-message id so the client can replace its placeholder."""
    message_id: str
    session_id: str
    name: str = "start"

    def payload(self) -> Dict[str, Any]:
        return {"messageId": self.message_id, "sessionId": self.session_id}


@dataclass(frozen=True)
class DeltaEvent:
    content: str
    index: int
    name: str = "delta"

    def payload(self) -> Dict[str, Any]:
        return {"content": self.content, "index": self.index}


@dataclass(frozen=True)
class DoneEvent:
    message_id: str
    usage: TokenUsage
    name: str = "done"

    def payload(self) -> Dict[str, Any]:
        return {
            "messageId": self.message_id,
            "usage": {
                "promptTokens": self.usage.prompt_tokens,
                "completionTokens": self.usage.completion_tokens,
            },
        }


@dataclass(frozen=True)
class ErrorEvent:
    code: str
    message: str
    name: str = "error"

    def payload(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


StreamEvent = Union[StartEvent, DeltaEvent, DoneEvent, ErrorEvent]

# Stable codes carried by ErrorEvent
STREAM_ERROR = "STREAM_ERROR"
STREAM_TIMEOUT = "STREAM_TIMEOUT"
PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
