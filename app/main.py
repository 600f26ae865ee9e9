"""Digital tailoring pipeline backend - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import Settings, settings as default_settings
from app.api.v1.router import v1_router
from app.api.v1.health import router as health_root_router
from app.api.v1 import artifacts as artifacts_api
from app.api.v1 import jobs as jobs_api
from app.errors import DTPError, RateLimitedError
from app.logging_config import configure_logging
from app.services import Services, build_services

logger = logging.getLogger(__name__)


async def handle_dtp_error(request: Request, exc: DTPError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(exc.retry_after_seconds)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": "Malformed request body."})


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """Build the application.

    When services are not supplied they are built from configuration at
    startup, after the configuration has been validated; a misconfigured
    process fails here instead of on its first request.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        active = services
        if active is None:
            settings.validate_for_startup()
            active = build_services(settings)

        logger.info("Starting digital tailoring backend on port %s", settings.compute_port)
        logger.info(
            "Backends: jobs=%s catalog=%s artifacts=%s",
            settings.job_store_backend,
            settings.catalog_backend,
            settings.artifact_backend,
        )

        await active.start()
        logger.info("Job dispatcher started")

        # Wire services into API endpoints
        jobs_api.set_services(active)
        artifacts_api.set_artifact_store(active.artifacts)

        yield

        logger.info("Shutting down digital tailoring backend")
        await active.stop()
        jobs_api.set_services(None)
        artifacts_api.set_artifact_store(None)

    app = FastAPI(
        title="Digital Tailoring Pipeline",
        description="Asynchronous base avatar and garment overlay generation jobs",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(DTPError, handle_dtp_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)

    # Mount routers
    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    return app


app = create_app()
