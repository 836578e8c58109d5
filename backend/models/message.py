"""
Message model definitions.
Represents individual messages in a chat session.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Author of a message. Closed set."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TokenUsage(BaseModel):
    """Token accounting reported by the provider at the end of a stream."""
    model_config = ConfigDict(populate_by_name=True)

    prompt_tokens: int = Field(0, alias="promptTokens")
    completion_tokens: int = Field(0, alias="completionTokens")

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class MessageCreate(BaseModel):
    """Schema for sending a message to a session.

    Args:
        content: Message text. Length is checked against max_message_length
            when the turn begins.
        model: Provider model to answer with. None means the configured
            default_model; anything else must be in allowed_models.
    """
    model_config = ConfigDict(protected_namespaces=())

    content: str
    model: Optional[str] = None


class Message(BaseModel):
    """Full message model as stored in database.

    model/prompt_tokens/completion_tokens are only set on assistant messages.
    """
    model_config = ConfigDict(protected_namespaces=())

    id: str
    session_id: str
    role: Role
    content: str
    created_at: datetime
    model: Optional[str] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class MessageResponse(BaseModel):
    """Message data returned in API responses."""
    model_config = ConfigDict(protected_namespaces=(), populate_by_name=True)

    id: str
    role: Role
    content: str
    created_at: datetime = Field(..., alias="createdAt")
    model: Optional[str] = None
    prompt_tokens: Optional[int] = Field(None, alias="promptTokens")
    completion_tokens: Optional[int] = Field(None, alias="completionTokens")

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            role=message.role,
            content=message.content,
            created_at=message.created_at,
            model=message.model,
            prompt_tokens=message.prompt_tokens,
            completion_tokens=message.completion_tokens,
        )


class MessagePage(BaseModel):
    """One page of a session's history, oldest first."""
    model_config = ConfigDict(populate_by_name=True)

    messages: List[MessageResponse]
    has_more: bool = Field(..., alias="hasMore")
    oldest_message_id: Optional[str] = Field(None, alias="oldestMessageId")
