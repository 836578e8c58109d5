"""
Simple in-memory rate limiter for auth and chat endpoints.

Limits login/register attempts per client IP address and streaming turns
per authenticated user (falling back to the IP when the request carries no
valid token), using a sliding window of request timestamps held in memory.
Limits come from settings ("max_requests/window_seconds").

Successful logins do not count against the login limit, so only failed
guesses are throttled.

Not shared between worker processes; a single uvicorn worker is assumed.
"""

import logging
import re
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple

from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from config import Settings, get_settings
from models.common import error_envelope
from routers.auth import decode_access_token, request_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateRule:
    """One rate-limited POST route.

    per_user: key by the token's subject instead of the client IP.
    skip_successful: responses below 400 give their slot back.
    """
    name: str
    pattern: Pattern
    limit: Tuple[int, int]  # (max_requests, window_seconds)
    per_user: bool = False
    skip_successful: bool = False


def build_rules(settings: Settings) -> List[RateRule]:
    """Rate-limited POST routes and their limits."""
    return [
        RateRule(
            "login",
            re.compile(r"^/api/auth/login$"),
            Settings.parse_rate_limit(settings.login_rate_limit),
            skip_successful=True,
        ),
        RateRule(
            "register",
            re.compile(r"^/api/auth/register$"),
            Settings.parse_rate_limit(settings.register_rate_limit),
        ),
        RateRule(
            "chat",
            re.compile(r"^/api/chat/sessions/[^/]+/messages/stream$"),
            Settings.parse_rate_limit(settings.chat_rate_limit),
            per_user=True,
        ),
    ]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory sliding window rate limiter.

    Tracks request timestamps per (client, rule name) in a dict, where the
    client is "user:<id>" or "ip:<address>". Stale entries are cleaned up
    periodically.

    Attributes:
        _counters: Dict mapping (client, rule) to list of request timestamps.
    """

    def __init__(self, app, rules: Optional[List[RateRule]] = None):
        super().__init__(app)
        self._rules = rules if rules is not None else build_rules(get_settings())
        # (client, rule name) -> list of timestamps
        self._counters: Dict[Tuple[str, str], list] = defaultdict(list)
        self._last_cleanup = time.time()
        logger.info(f"RateLimitMiddleware active for: {', '.join(r.name for r in self._rules)}")

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP from request, respecting X-Forwarded-For."""
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"

    def _get_user_id(self, request: Request) -> Optional[str]:
        """Subject of a valid access token, if the request carries one."""
        token = request_token(request)
        if not token:
            return None
        try:
            return decode_access_token(token).get("sub")
        except JWTError:
            return None

    def _client_key(self, request: Request, rule: RateRule) -> str:
        if rule.per_user:
            user_id = self._get_user_id(request)
            if user_id:
                return f"user:{user_id}"
        return f"ip:{self._get_client_ip(request)}"

    def _match(self, path: str) -> Optional[RateRule]:
        for rule in self._rules:
            if rule.pattern.match(path):
                return rule
        return None

    def _cleanup_stale(self) -> None:
        """Remove expired timestamps older than the largest window."""
        now = time.time()
        # Only clean up every 60 seconds to avoid overhead
        if now - self._last_cleanup < 60 or not self._rules:
            return
        self._last_cleanup = now

        max_window = max(rule.limit[1] for rule in self._rules)
        cutoff = now - max_window
        stale_keys = []
        for key, timestamps in self._counters.items():
            self._counters[key] = [t for t in timestamps if t > cutoff]
            if not self._counters[key]:
                stale_keys.append(key)
        for key in stale_keys:
            del self._counters[key]

    async def dispatch(self, request: Request, call_next) -> Response:
        """Check rate limits before processing.

        Returns:
            Response from next handler, or a 429 error envelope if rate limited.
        """
        if request.method != "POST":
            return await call_next(request)

        rule = self._match(request.url.path)
        if rule is None:
            return await call_next(request)

        max_requests, window_seconds = rule.limit
        client = self._client_key(request, rule)
        key = (client, rule.name)
        now = time.time()

        self._cleanup_stale()

        # Remove timestamps outside the window
        self._counters[key] = [
            t for t in self._counters[key] if t > now - window_seconds
        ]

        if len(self._counters[key]) >= max_requests:
            retry_after = max(1, int(window_seconds - (now - self._counters[key][0])))
            logger.warning(
                f"Rate limit hit: {client} on {rule.name} "
                f"({len(self._counters[key])}/{max_requests} in {window_seconds}s)"
            )
            return JSONResponse(
                status_code=429,
                content=error_envelope(
                    "RATE_LIMIT_EXCEEDED",
                    f"Too many requests. Try again in {retry_after} seconds.",
                ),
                headers={"Retry-After": str(retry_after)},
            )

        # Record this request
        self._counters[key].append(now)
        response = await call_next(request)

        if rule.skip_successful and response.status_code < 400:
            timestamps = self._counters.get(key)
            if timestamps and now in timestamps:
                timestamps.remove(now)
        return response
