"""
FastAPI main application entry point.

Routes (all under /api):
  /api/auth/...                                  → register, login, logout, me
  /api/chat/sessions/...                         → session CRUD
  /api/chat/sessions/{id}/messages               → history pages
  /api/chat/sessions/{id}/messages/stream        → streaming turn (SSE)
  /api/health                                    → liveness + database ping

Security model:
  - RateLimitMiddleware throttles auth attempts per IP and streaming turns per user
  - All chat endpoints require JWT authentication (bearer header or cookie)
  - Security headers prevent clickjacking, MIME sniffing, etc.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from config import DEFAULT_JWT_SECRET, get_settings
from database import close_db, connect_db, get_database
from middleware.rate_limit import RateLimitMiddleware
from models.common import error_envelope
from relay.orchestrator import wait_for_background_tasks
from sqlite_db import utcnow
from utils.errors import AppError, RateLimitError

# Import routers
from routers import auth, sessions, messages

settings = get_settings()

# ============================================================
# Logging Configuration
# ============================================================
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Suppress noisy third-party log spam
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


# ============================================================
# Application Lifespan (startup/shutdown)
# ============================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown events."""
    # Startup
    logger.info("Starting up chat relay...")

    _settings = get_settings()
    if _settings.jwt_secret_key == DEFAULT_JWT_SECRET:
        logger.warning(
            "JWT_SECRET_KEY is still the default! "
            "Generate a real secret: python -c \"import secrets; print(secrets.token_hex(32))\" "
            "and set it in .env"
        )
    if not _settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; streaming turns will fail")

    logger.info(f"CORS origins: {_settings.cors_origins_list}")

    await connect_db()

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down chat relay...")
    # Let in-flight title updates land before the connection goes away
    await wait_for_background_tasks()
    await close_db()


# ============================================================
# Create FastAPI Application
# ============================================================
app = FastAPI(
    title="Chat Relay API",
    description="Streaming chat completions relayed from an OpenAI-compatible provider",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)


# ============================================================
# Error Handlers
# ============================================================
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Operational errors: known status, stable code."""
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body/query/path failed schema validation."""
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc) or "request", "message": err.get("msg", "Invalid value")})
    logger.warning(f"{request.method} {request.url.path} -> 422 VALIDATION_ERROR: {details}")
    return JSONResponse(
        status_code=422,
        content=error_envelope("VALIDATION_ERROR", "Validation failed", details),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (unknown route, wrong method)."""
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything else is a bug: log the traceback, hide details unless debugging."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    message = str(exc) if get_settings().debug else "Internal server error"
    return JSONResponse(
        status_code=500,
        content=error_envelope("INTERNAL_ERROR", message),
    )


# ============================================================
# Middleware Stack (last added runs first)
# ============================================================
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to every response.

    Prevents clickjacking, MIME sniffing, and other common attacks.
    Streaming responses keep the Cache-Control they were built with.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if "cache-control" not in response.headers:
            response.headers["Cache-Control"] = "no-store"
        return response


# 1. Security headers (runs on every response)
app.add_middleware(SecurityHeadersMiddleware)

# 2. CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 3. Rate limiting on auth and streaming endpoints
app.add_middleware(RateLimitMiddleware)


# ============================================================
# API Routes: all mounted under /api prefix
# ============================================================
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(sessions.router, prefix="/api/chat/sessions", tags=["Sessions"])
app.include_router(messages.router, prefix="/api/chat/sessions", tags=["Messages"])


# ============================================================
# Health Check
# ============================================================
@app.get("/api/health")
async def health_check():
    """Liveness probe plus a database ping."""
    timestamp = utcnow().isoformat()
    try:
        await get_database().command("ping")
    except Exception as e:
        logger.error(f"Health check: database unavailable: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "data": {"status": "unhealthy", "timestamp": timestamp, "database": "disconnected"},
            },
        )

    return {
        "success": True,
        "data": {"status": "healthy", "timestamp": timestamp, "database": "connected"},
    }


# ============================================================
# Run with Uvicorn (for development)
# ============================================================
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
