"""
API routers package.
Each router handles a specific domain of endpoints.
"""

from routers import auth, sessions, messages

__all__ = [
    "auth",
    "sessions",
    "messages",
]
