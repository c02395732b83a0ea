"""Read-only status API over the files a run persisted.

``stackup run`` writes the status and report files; this app only reads
them, so it can be restarted or scaled independently of any run.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from stackup import __version__
from stackup.api.deps import get_settings_dependency
from stackup.api.routes import api_router
from stackup.config import Settings, get_settings
from stackup.middleware.logging import LoggingMiddleware, configure_logging
from stackup.middleware.request_id import RequestIdMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(level=settings.logging.level, format=settings.logging.format)
    settings.validate_required()

    logger.info(
        f"Status API {__version__} serving {settings.report.status_file}",
        extra={"path": str(settings.report.status_file)},
    )
    yield
    logger.info("Status API stopped")


def _add_middleware(app: FastAPI, settings: Settings) -> None:
    # Last added runs first: logging sees the request ID set by RequestIdMiddleware
    cors = settings.server.cors
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors.allowed_origins,
        allow_credentials=False,
        allow_methods=cors.allowed_methods,
        allow_headers=cors.allowed_headers,
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(LoggingMiddleware)


async def invalid_report_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """A persisted report that no longer matches the model, e.g. hand-edited."""
    logger.error(f"Stored report failed validation: {exc.error_count()} error(s)")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Stored report is invalid",
            "errors": exc.errors(include_url=False, include_context=False),
        },
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    logger.exception(
        "Unhandled exception",
        extra={"request_id": request_id, "method": request.method, "path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred", "request_id": request_id},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the status API.

    Args:
        settings: Settings to serve with; loaded from the environment if omitted.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="stackup",
        description="Read-only status of the last service bring-up and verification run",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.dependency_overrides[get_settings_dependency] = lambda: settings

    _add_middleware(app, settings)
    app.add_exception_handler(ValidationError, invalid_report_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(api_router)
    return app


def run_server(settings: Settings | None = None) -> None:
    """Serve the status API with uvicorn until interrupted."""
    import uvicorn

    settings = settings or get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
    )
