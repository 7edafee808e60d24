"""
FastAPI application for the learnpath engine.

Provides REST API for:
- Next-lesson recommendation
- Spaced-repetition reviews and the due-review queue
- Lesson and subject completion
- Session telemetry feeding the cognitive state
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from learnpath import __version__
from learnpath.config import get_settings
from learnpath.errors import (
    GraphInconsistency,
    InvalidInput,
    LearnPathError,
    NotFound,
    StorageUnavailable,
)
from learnpath.logging import configure_logging
from learnpath.models import utcnow
from learnpath.service import Services, build_services

STATUS_BY_ERROR: dict[type[LearnPathError], int] = {
    InvalidInput: 400,
    NotFound: 404,
    GraphInconsistency: 409,
    StorageUnavailable: 503,
}


def _error_body(code: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message}}


async def learnpath_error_handler(request: Request, exc: LearnPathError) -> JSONResponse:
    status_code = next(
        (status for cls, status in STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=_error_body(exc.code, exc.message))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid request')}" if location else "Invalid request."
    return JSONResponse(status_code=400, content=_error_body(InvalidInput.code, message))


def create_app(services: Services | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        services: Pre-built components (tests); built from settings on startup if None
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup/shutdown events."""
        configure_logging(settings.log_level, settings.log_file)
        logger.info("Starting learnpath service...")
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings=settings)
            app.state.services.db.init_db()
        logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

        yield

        logger.info("Shutting down learnpath service...")

    app = FastAPI(
        title="LearnPath Engine",
        description="""
    Adaptive learning-path engine.

    ## Features

    - **Next lesson**: prerequisite-ordered recommendation with a focus-aware rationale
    - **Reviews**: SM-2 spaced repetition and the due-review queue
    - **Telemetry**: session start / interaction / end events driving the focus score
    """,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    # CORS middleware for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LearnPathError, learnpath_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    @app.get("/health", tags=["Health"])
    def health_check(request: Request) -> JSONResponse:
        """Health check with an actual database round-trip."""
        db_ok = request.app.state.services.db.check_health()
        body = {
            "status": "healthy" if db_ok else "unhealthy",
            "timestamp": utcnow().isoformat(),
            "version": __version__,
            "components": {"database": "ok" if db_ok else "error"},
        }
        return JSONResponse(status_code=200 if db_ok else 503, content=body)

    from learnpath.api.routers import learning_router, telemetry_router

    app.include_router(learning_router.router, prefix="/learning", tags=["Learning"])
    app.include_router(telemetry_router.router, prefix="/telemetry", tags=["Telemetry"])

    return app
