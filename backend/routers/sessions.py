"""
Sessions router.
Handles CRUD operations for chat sessions.
"""

import logging
import math
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from conversation_store import ConversationStore
from database import get_store
from models.common import ApiMessage, ApiResponse
from models.session import (
    Pagination,
    SessionCreate,
    SessionPage,
    SessionResponse,
    SessionUpdate,
)
from routers.auth import get_current_user

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=ApiResponse[SessionPage])
async def list_sessions(
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> ApiResponse[SessionPage]:
    """List the user's sessions, most recently active first."""
    sessions, total = await store.list_sessions(current_user["id"], page, limit)

    return ApiResponse(
        data=SessionPage(
            sessions=[SessionResponse.from_session(s) for s in sessions],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit),
            ),
        )
    )


@router.post(
    "",
    response_model=ApiResponse[SessionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_session(
    data: SessionCreate,
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
) -> ApiResponse[SessionResponse]:
    """Create a new session."""
    title = data.title.strip() if data.title else None
    session = await store.create_session(current_user["id"], title or None)
    logger.info(f"Created session {session.id} for user {current_user['id']}")
    return ApiResponse(data=SessionResponse.from_session(session))


@router.get("/{session_id}", response_model=ApiResponse[SessionResponse])
async def get_session(
    session_id: UUID,
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
) -> ApiResponse[SessionResponse]:
    """Get a specific session by ID."""
    session = await store.get_session(str(session_id), current_user["id"])
    return ApiResponse(data=SessionResponse.from_session(session))


@router.patch("/{session_id}", response_model=ApiResponse[SessionResponse])
async def update_session(
    session_id: UUID,
    data: SessionUpdate,
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
) -> ApiResponse[SessionResponse]:
    """Rename a session."""
    session = await store.update_session_title(str(session_id), current_user["id"], data.title)
    return ApiResponse(data=SessionResponse.from_session(session))


@router.delete("/{session_id}", response_model=ApiMessage)
async def delete_session(
    session_id: UUID,
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
) -> ApiMessage:
    """Delete a session and all its messages."""
    await store.delete_session(str(session_id), current_user["id"])
    return ApiMessage(message="Session deleted")
