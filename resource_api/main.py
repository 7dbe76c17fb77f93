"""
Resource API Application Factory

Builds a FastAPI application exposing resource controllers, including
router registration, error handling and application configuration.
"""

import logging
import traceback
from contextlib import asynccontextmanager
from typing import Iterable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from resource_api.api.resources import build_resource_router
from resource_api.common.errors import AppError
from resource_api.config import get_settings
from resource_api.controllers.base import ResourceController
from resource_api.db.session import init_db
from resource_api.logging_config import setup_logging

logger = logging.getLogger(__name__)

# Statuses that must not carry a response body
_NO_BODY_STATUSES = {204, 304}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application Lifecycle Management

    Create tables for every mapped model on startup.
    """
    await init_db()
    yield


async def app_error_handler(request: Request, exc: AppError):
    """
    Handle application custom exceptions

    In production mode, error details are hidden to prevent information leakage.
    """
    if exc.status_code in _NO_BODY_STATUSES:
        return Response(status_code=exc.status_code)
    settings = get_settings()
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(include_details=settings.DEBUG),
    )


async def general_exception_handler(request: Request, exc: Exception):
    """
    Handle uncaught exceptions

    Stack traces are logged but only returned to clients in debug mode.
    """
    settings = get_settings()
    logger.error(
        "Uncaught exception: %s\nPath: %s\nTraceback:\n%s",
        str(exc),
        request.url.path,
        traceback.format_exc(),
    )

    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": str(exc),
                    "type": type(exc).__name__,
                    "code": "internal_error",
                    "traceback": traceback.format_exc().split("\n"),
                }
            },
        )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "message": "Internal server error",
                "type": "internal_error",
                "code": "internal_error",
            }
        },
    )


def create_app(
    resources: Iterable[tuple[str, type[ResourceController]]] = (),
) -> FastAPI:
    """
    Create the FastAPI application

    Args:
        resources: (prefix, controller class) pairs, e.g. [("/books", Book)]

    Returns:
        FastAPI: Configured application
    """
    setup_logging()
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        description="CRUD resources over SQLAlchemy models",
        version="0.1.0",
        lifespan=lifespan,
    )

    allowed_origins_str = settings.ALLOWED_ORIGINS.strip()
    if allowed_origins_str:
        allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()]
    elif settings.DEBUG:
        allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    else:
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """
        Health Check

        Used for service liveness probe.
        """
        return {"status": "healthy"}

    for prefix, controller_cls in resources:
        app.include_router(build_resource_router(controller_cls, prefix))
        logger.info("Registered resource %s at %s", controller_cls.__name__, prefix)

    return app
