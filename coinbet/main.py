"""
coinbet Main Application Entry Point
FastAPI service that settles heads-or-tails wagers against user wallets.
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from coinbet.config import settings
from coinbet.core.database import Database, get_database
from coinbet.core.exceptions import InvalidRequest, SettlementError
from coinbet.core.logger import get_logger, init_logging
from coinbet.routers import admin, api, auth

# Initialize logging first
init_logging(
    level=settings.logging.level,
    log_to_file=settings.logging.log_to_file,
    formatter=settings.logging.formatter,
    log_file_path=settings.paths.get_log_path(),
)
logger = get_logger("main")


# ==================== Security Headers Middleware ====================


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"

        return response


# ==================== Exception Handlers ====================


async def settlement_error_handler(request: Request, exc: SettlementError):
    """Every business error becomes {"error", "kind"} with its status code."""
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are reported like any other validation failure."""
    error = InvalidRequest()
    logger.info("Rejected malformed request", extra={"path": request.url.path})
    return ORJSONResponse(status_code=error.status_code, content=error.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions gracefully."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return ORJSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.server.debug else None,
        },
    )


# ==================== Application Setup ====================


def create_app(db: Optional[Database] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.server.name,
        docs_url="/docs" if settings.server.debug else None,
        redoc_url=None,
        default_response_class=ORJSONResponse,
    )

    app.state.db = db if db is not None else get_database()

    # Add slowapi rate limiter
    app.state.limiter = api.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(SettlementError, settlement_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # Add security headers middleware
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware (for development)
    if settings.server.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Include routers
    app.include_router(auth.router)
    app.include_router(api.router, prefix="/api")
    app.include_router(admin.router, prefix="/admin")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    logger.info(f"Application '{settings.server.name}' initialized")
    logger.info(f"Debug mode: {settings.server.debug}")

    return app


def main():
    uvicorn.run(
        "coinbet.main:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.debug,
    )


if __name__ == "__main__":
    main()
