"""
FastAPI application entry point.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from gitchat.db import close_db, init_db
from gitchat.errors import ChatError
from gitchat.models.base import utcnow
from gitchat.routers import auth, chat, realtime, users
from gitchat.services.keepalive import start_keepalive
from gitchat.services.presence import PresenceRegistry
from gitchat.settings import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s" if settings.log_format == "text" else None,
)
logger = logging.getLogger(__name__)

IMAGE_UPLOAD_PATH = "/api/chat/messages/image"
MULTIPART_OVERHEAD_BYTES = 64 * 1024


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting %s...", settings.app_name)
    await init_db()
    app.state.presence = PresenceRegistry()
    keepalive_task = start_keepalive()
    yield
    logger.info("Shutting down %s...", settings.app_name)
    if keepalive_task:
        keepalive_task.cancel()
        try:
            await keepalive_task
        except asyncio.CancelledError:
            pass
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request ID middleware
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID to all requests for logging."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# Session refresh middleware - keeps cookies in sync with sliding sessions
@app.middleware("http")
async def refresh_session_cookie(request: Request, call_next):
    """Re-set the session cookie when the auth dependency extended the session."""
    response = await call_next(request)

    if getattr(request.state, "session_refreshed", False):
        session_token = request.cookies.get("session_token")
        if session_token:
            auth.set_session_cookie(response, session_token)

    return response


# Upload cap enforced before the multipart body is parsed
@app.middleware("http")
async def limit_upload_size(request: Request, call_next):
    """Reject oversized image uploads from the Content-Length header alone."""
    if request.method == "POST" and request.url.path == IMAGE_UPLOAD_PATH:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit():
            if int(content_length) > settings.upload_max_size_bytes + MULTIPART_OVERHEAD_BYTES:
                return JSONResponse(
                    {"detail": f"Image exceeds maximum allowed size ({settings.upload_max_size_mb}MB)"},
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                )
    return await call_next(request)


# Health check endpoints
@app.get("/healthz", tags=["health"])
@app.get("/api/health", tags=["health"])
async def healthz():
    """Health check endpoint for load balancers and the keepalive ping."""
    return {"status": "healthy", "timestamp": utcnow().isoformat()}


app.include_router(auth.router)
app.include_router(chat.router)
app.include_router(users.router)
app.include_router(realtime.router)


def wants_json(request: Request) -> bool:
    """API-style request (fetch/XHR) rather than a browser navigation."""
    if request.headers.get("X-Requested-With") == "XMLHttpRequest":
        return True
    accept = request.headers.get("Accept", "")
    return "application/json" in accept and "text/html" not in accept


def unauthorized_response(request: Request, detail: str | None):
    if wants_json(request):
        return JSONResponse({"detail": detail or "Not authenticated"}, status_code=status.HTTP_401_UNAUTHORIZED)
    return RedirectResponse(url=settings.login_url, status_code=status.HTTP_302_FOUND)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        return unauthorized_response(request, exc.detail)
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed ids and bodies are plain 400s."""
    errors = exc.errors()
    detail = "Invalid request"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()))
        detail = f"Invalid request: {location} {errors[0].get('msg', '')}".strip()
    return JSONResponse({"detail": detail}, status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """JSON for API callers; browser navigations without a session go to login."""
    detail = exc.detail if hasattr(exc, "detail") else str(exc)

    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        return unauthorized_response(request, detail)

    if exc.status_code >= 500:
        logger.error("Server error %s: %s", exc.status_code, detail)
        return JSONResponse({"detail": "Server error"}, status_code=exc.status_code)

    return JSONResponse({"detail": detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


# Generic exception handler for unhandled errors
@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gitchat.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
