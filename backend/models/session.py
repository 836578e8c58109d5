"""
Session model definitions.
Represents a chat session between a user and the AI.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class SessionCreate(BaseModel):
    """Schema for creating a new session."""
    title: Optional[str] = Field(None, max_length=255)


class SessionUpdate(BaseModel):
    """Schema for renaming a session."""
    title: str = Field(..., min_length=1, max_length=255)


class Session(BaseModel):
    """
    Full session model as stored in database.
    message_count is derived from the messages table when fetched.
    """
    id: str
    user_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int = 0


class SessionResponse(BaseModel):
    """Session data returned in API responses."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")
    message_count: int = Field(0, alias="messageCount")

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            title=session.title,
            created_at=session.created_at,
            updated_at=session.updated_at,
            message_count=session.message_count,
        )


class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int
    limit: int
    total: int
    total_pages: int = Field(..., alias="totalPages")


class SessionPage(BaseModel):
    sessions: List[SessionResponse]
    pagination: Pagination
