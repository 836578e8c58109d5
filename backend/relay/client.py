"""
HTTP consumer for the streaming message endpoint.

Mirrors what the browser does: POST the message, bail out with the JSON
error envelope if the stream never opened, otherwise decode frames as the
bytes arrive.

    async with ChatClient("http://localhost:8000", token) as client:
        async for event in client.stream_message(session_id, "Hello"):
            if isinstance(event, DeltaEvent):
                print(event.content, end="", flush=True)
"""

import json
import logging
from typing import AsyncIterator, Optional

import httpx

from relay.events import StreamEvent
from relay.transport import iter_stream_events

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A request was rejected before any stream opened."""

    def __init__(self, status_code: int, code: str, message: str, details=None):
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class ChatClient:
    """Minimal async client for the chat API."""

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def stream_message(
        self,
        session_id: str,
        content: str,
        model: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Send a message and yield decoded events until the terminal one.

        Raises:
            ApiError: If the server answered with a non-200 JSON error.
        """
        body = {"content": content}
        if model:
            body["model"] = model

        async with self._http.stream(
            "POST",
            f"/api/chat/sessions/{session_id}/messages/stream",
            json=body,
        ) as response:
            if response.status_code != 200:
                raw = await response.aread()
                raise self._api_error(response.status_code, raw)

            async for event in iter_stream_events(response.aiter_bytes()):
                yield event

    @staticmethod
    def _api_error(status_code: int, raw: bytes) -> ApiError:
        try:
            error = json.loads(raw).get("error") or {}
        except (json.JSONDecodeError, AttributeError):
            error = {}
        return ApiError(
            status_code=status_code,
            code=error.get("code", "HTTP_ERROR"),
            message=error.get("message", "Failed to send message"),
            details=error.get("details"),
        )
