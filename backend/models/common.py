"""
Response envelope shared by every JSON endpoint.

Success: {"success": true, "data": ...}
Failure: {"success": false, "error": {"code", "message", "details"?}}
"""

from typing import Any, Generic, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T


class ApiMessage(BaseModel):
    success: bool = True
    message: str


def error_envelope(code: str, message: str, details: Any = None) -> dict:
    """Build the failure envelope as a plain dict for JSONResponse."""
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}
