"""
User model definitions.
Handles user authentication and profile data.
"""

from datetime import datetime
from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    """Schema for user registration."""
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=8, max_length=128)


class UserLogin(BaseModel):
    """Schema for user login."""
    username: str
    password: str


class User(BaseModel):
    """
    Full user model as stored in database.
    Password hash is never exposed in responses.
    """
    id: str
    username: str
    password_hash: str
    created_at: datetime


class UserResponse(BaseModel):
    """
    User data returned in API responses.
    Excludes sensitive fields like password_hash.
    """
    id: str
    username: str
    created_at: datetime


class TokenResponse(BaseModel):
    """JWT token response after successful login."""
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
