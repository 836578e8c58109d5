"""
Authentication router.
Handles user registration, login, and token management.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import bcrypt
from jose import JWTError, jwt

from config import get_settings
from conversation_store import ConversationStore
from database import get_store
from models.common import ApiMessage, ApiResponse
from models.user import UserCreate, UserLogin, UserResponse, TokenResponse, User
from utils.errors import UnauthorizedError, ValidationFailed
from utils.validators import validate_password, validate_username

logger = logging.getLogger(__name__)
router = APIRouter()

ACCESS_TOKEN_COOKIE = "access_token"

# ============================================================
# Password Hashing
# ============================================================
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    # Stored as a UTF-8 string like: "$2b$12$..."
    return hashed.decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a password against its hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# ============================================================
# JWT Token Management
# ============================================================
def create_access_token(user_id: str, username: str) -> str:
    """Create a JWT access token for a user."""
    settings = get_settings()

    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "username": username,
        "exp": now + timedelta(hours=settings.jwt_expiration_hours),
        "iat": now,
    }

    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """Verify a token's signature and expiry and return its claims.

    Raises:
        JWTError: If the token is malformed, expired or wrongly signed.
    """
    settings = get_settings()
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def request_token(request: Request) -> Optional[str]:
    """Bearer header first, then the access_token cookie."""
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        return token
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    Dependency to get current authenticated user from JWT token.
    Accepts a bearer header or the access_token cookie.
    Raises UnauthorizedError if the token is missing or invalid.
    """
    token = credentials.credentials if credentials else request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        raise UnauthorizedError("Authentication required", code="NO_TOKEN")

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise UnauthorizedError("Invalid or expired token", code="INVALID_TOKEN")

    user_id = payload.get("sub")
    username = payload.get("username")
    if not user_id or not username:
        raise UnauthorizedError("Invalid or expired token", code="INVALID_TOKEN")

    return {"id": user_id, "username": username}


def _set_token_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        token,
        max_age=settings.jwt_expiration_hours * 3600,
        httponly=True,
        samesite="strict",
        secure=not settings.debug,
    )


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id, user.username),
        user=UserResponse(id=user.id, username=user.username, created_at=user.created_at),
    )


async def register_user(store: ConversationStore, username: str, password: str) -> User:
    """Validate credentials and create the account.

    Shared by the register endpoint and the create_user command.

    Raises:
        ValidationFailed: Username or password breaks the rules.
        ConflictError: Username already taken.
    """
    problems = []
    ok, message = validate_username(username)
    if not ok:
        problems.append({"field": "username", "message": message})
    ok, message = validate_password(password)
    if not ok:
        problems.append({"field": "password", "message": message})
    if problems:
        raise ValidationFailed("Validation failed", details=problems)

    user = await store.create_user(username, hash_password(password))
    logger.info(f"Registered user {user.username}")
    return user


# ============================================================
# Endpoints
# ============================================================
@router.post(
    "/register",
    response_model=ApiResponse[TokenResponse],
    status_code=status.HTTP_201_CREATED,
)
async def register(
    user_data: UserCreate,
    response: Response,
    store: ConversationStore = Depends(get_store),
) -> ApiResponse[TokenResponse]:
    """Register a new user account."""
    user = await register_user(store, user_data.username, user_data.password)

    token = _token_response(user)
    _set_token_cookie(response, token.access_token)
    return ApiResponse(data=token)


@router.post("/login", response_model=ApiResponse[TokenResponse])
async def login(
    credentials: UserLogin,
    response: Response,
    store: ConversationStore = Depends(get_store),
) -> ApiResponse[TokenResponse]:
    """Login with username and password."""
    user = await store.get_user_by_username(credentials.username)

    if not user or not verify_password(credentials.password, user.password_hash):
        logger.warning(f"Failed login for '{credentials.username}'")
        raise UnauthorizedError("Invalid username or password", code="INVALID_CREDENTIALS")

    token = _token_response(user)
    _set_token_cookie(response, token.access_token)
    return ApiResponse(data=token)


@router.post("/logout", response_model=ApiMessage)
async def logout(response: Response) -> ApiMessage:
    """Clear the auth cookie. Bearer tokens simply expire."""
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    return ApiMessage(message="Logged out")


@router.get("/me", response_model=ApiResponse[UserResponse])
async def get_me(
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
) -> ApiResponse[UserResponse]:
    """Get current authenticated user's profile."""
    user = await store.get_user(current_user["id"])
    if user is None:
        raise UnauthorizedError("User not found", code="INVALID_TOKEN")

    return ApiResponse(
        data=UserResponse(id=user.id, username=user.username, created_at=user.created_at)
    )
