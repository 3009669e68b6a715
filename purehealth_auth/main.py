"""
Purehealth Auth API - FastAPI Application

Main entry point for the passkey authentication service.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError

from purehealth_auth import __version__
from purehealth_auth.config import get_settings
from purehealth_auth.core.database import close_db, init_db
from purehealth_auth.core.ephemeral import EphemeralStore, build_ephemeral_store, close_redis
from purehealth_auth.core.exceptions import PasskeyError
from purehealth_auth.models.contracts.common import ErrorResponse
from purehealth_auth.routers import health_router, users_router, webauthn_router

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 60


async def _sweep_expired(store: EphemeralStore) -> None:
    """Periodically drop expired challenges and temporary registrations."""
    while True:
        await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
        removed = await store.sweep()
        if removed:
            logger.debug(f"Swept {removed} expired ephemeral entries")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    settings = get_settings()
    logger.info("Starting Purehealth Auth API...")

    logger.info("Initializing database connection...")
    await init_db()
    logger.info("Database connection established")

    sweeper = asyncio.create_task(_sweep_expired(app.state.ephemeral_store))

    logger.info(f"Purehealth Auth API started in {settings.environment} mode")

    yield

    logger.info("Shutting down Purehealth Auth API...")
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await close_redis()
    await close_db()
    logger.info("Purehealth Auth API shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Purehealth Auth API",
        description="Passkey authentication for the Purehealth Profit Management System",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Pending challenges and temporary registrations
    app.state.ephemeral_store = build_ephemeral_store(settings)

    # ==========================================================================
    # CORS Middleware
    # ==========================================================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==========================================================================
    # Global Exception Handlers
    # ==========================================================================

    @app.exception_handler(PasskeyError)
    async def passkey_error_handler(request: Request, exc: PasskeyError) -> JSONResponse:
        """Ceremony and passkey management failures -> their own status."""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.error,
                message=exc.message,
                details=exc.details,
            ).model_dump(),
        )

    @app.exception_handler(PydanticValidationError)
    async def pydantic_validation_handler(
        request: Request, exc: PydanticValidationError
    ) -> JSONResponse:
        """Pydantic model validation errors -> 422."""
        field_errors = {".".join(str(loc) for loc in e["loc"]): e["msg"] for e in exc.errors()}
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(
                error="validation_error",
                message="Validation failed",
                details={"fields": field_errors},
            ).model_dump(),
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
        """Database constraint violations -> 409."""
        detail = str(exc.orig) if exc.orig else str(exc)
        if "unique" in detail.lower() or "duplicate" in detail.lower():
            message = "Resource already exists"
        else:
            message = "Database constraint violation"

        logger.warning(f"IntegrityError: {detail}")
        return JSONResponse(
            status_code=409,
            content=ErrorResponse(error="conflict", message=message).model_dump(),
        )

    @app.exception_handler(NoResultFound)
    async def no_result_handler(request: Request, exc: NoResultFound) -> JSONResponse:
        """Query returned no results -> 404."""
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(error="not_found", message="Resource not found").model_dump(),
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        """Database connection issues -> 503."""
        logger.error(f"Database operational error: {exc}", exc_info=True)
        return JSONResponse(
            status_code=503,
            content=ErrorResponse(
                error="service_unavailable",
                message="Service temporarily unavailable",
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions -> 500."""
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}: {exc}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="internal_error",
                message="An unexpected error occurred",
            ).model_dump(),
        )

    # ==========================================================================
    # Register Routers
    # ==========================================================================
    app.include_router(health_router)
    app.include_router(webauthn_router)
    app.include_router(users_router)

    @app.get("/")
    async def root():
        return {
            "name": "Purehealth Auth API",
            "version": __version__,
            "docs": "/docs",
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "purehealth_auth.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
