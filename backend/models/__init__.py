"""
Pydantic models package.
Each module contains models for a specific domain.
"""

from models.user import User, UserCreate, UserLogin, UserResponse, TokenResponse
from models.session import Session, SessionCreate, SessionUpdate, SessionResponse, SessionPage
from models.message import (
    Role, TokenUsage, Message, MessageCreate, MessageResponse, MessagePage,
)
from models.common import ApiResponse, ApiMessage, error_envelope

__all__ = [
    "User", "UserCreate", "UserLogin", "UserResponse", "TokenResponse",
    "Session", "SessionCreate", "SessionUpdate", "SessionResponse", "SessionPage",
    "Role", "TokenUsage", "Message", "MessageCreate", "MessageResponse", "MessagePage",
    "ApiResponse", "ApiMessage", "error_envelope",
]
