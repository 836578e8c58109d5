"""
Messages router.
Reads session history and relays streaming turns.

The stream endpoint does all fallible pre-work (ownership, validation,
persisting the user message) before the response is committed, so those
failures come back as normal JSON errors. Once the 200 goes out, every
problem is reported as a terminal ``error`` event inside the stream.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from config import get_settings
from conversation_store import ConversationStore
from database import get_store
from llm.base import LLMProvider
from llm.factory import create_provider
from models.common import ApiResponse
from models.message import MessageCreate, MessagePage, MessageResponse
from relay.orchestrator import RelayOrchestrator
from relay.transport import event_stream_response
from routers.auth import get_current_user

logger = logging.getLogger(__name__)
router = APIRouter()


def get_completion_client() -> LLMProvider:
    """Fresh provider per request (overridden in tests)."""
    return create_provider()


@router.get("/{session_id}/messages", response_model=ApiResponse[MessagePage])
async def get_messages(
    session_id: UUID,
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
    limit: int = Query(50, ge=1, le=100),
    before: Optional[str] = Query(None),
) -> ApiResponse[MessagePage]:
    """
    Get one page of a session's history, oldest first.
    Pass the previous page's oldestMessageId as ``before`` to page backwards.
    """
    messages, has_more = await store.get_messages(
        str(session_id), current_user["id"], limit=limit, before=before
    )

    return ApiResponse(
        data=MessagePage(
            messages=[MessageResponse.from_message(m) for m in messages],
            has_more=has_more,
            oldest_message_id=messages[0].id if messages else None,
        )
    )


@router.post("/{session_id}/messages/stream")
async def stream_message(
    session_id: UUID,
    body: MessageCreate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
    provider: LLMProvider = Depends(get_completion_client),
) -> StreamingResponse:
    """
    Send a message and stream the assistant's reply as server-sent events.

    Frames: start, delta*, then exactly one of done or error.
    """
    orchestrator = RelayOrchestrator(store, provider, get_settings())
    turn = await orchestrator.begin_turn(
        str(session_id),
        current_user["id"],
        body.content,
        model=body.model,
    )

    return event_stream_response(
        orchestrator.stream_turn(turn, is_disconnected=request.is_disconnected)
    )
