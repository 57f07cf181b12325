"""
Contract Analysis Service API
=============================

FastAPI application for contract ingestion and AI analysis.

Endpoints (see api_contracts.py):
- POST /api/v1/contracts/upload
- GET  /api/v1/contracts
- GET  /api/v1/contracts/{contract_id}
- GET  /api/v1/contracts/{contract_id}/download-url
- GET  /api/v1/files/{token}

Run with:
    uvicorn contract_analysis.api:app --host 0.0.0.0 --port 8000
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api_contracts import router as contracts_router
from .config import Settings, get_settings
from .db.session import init_db
from .errors import PipelineError
from .ingestion import IngestionCoordinator
from .jobs.dispatcher import AnalysisDispatcher, get_dispatcher
from .jobs.sweeper import StaleContractSweeper
from .middleware.rate_limit import RateLimiter, RateLimitMiddleware, build_rate_limiter
from .storage import BlobStore, get_storage

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# CORS - get allowed origins from environment, default to localhost for development
def _parse_cors_origins(raw: str) -> List[str]:
    origins: List[str] = []
    for item in raw.split(","):
        origin = item.strip().strip('"').strip("'").rstrip("/")
        if origin:
            origins.append(origin)
    return origins


CORS_ALLOW_ORIGINS = _parse_cors_origins(os.environ.get(
    "CORS_ALLOW_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000,http://localhost:8000,http://127.0.0.1:8000"
))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, drain background analysis on shutdown"""
    settings: Settings = app.state.settings
    logger.info(f"Starting Contract Analysis Service v{settings.service_version}")
    for warning in settings.validate_runtime_config():
        logger.warning(f"Config: {warning}")

    init_db()

    sweep_task: Optional[asyncio.Task] = None
    if settings.stale_sweep_interval_seconds > 0:
        sweeper = StaleContractSweeper(
            dispatcher=app.state.dispatcher,
            stale_minutes=settings.stale_processing_minutes,
            max_attempts=settings.max_analysis_attempts,
        )
        sweep_task = asyncio.create_task(
            sweeper.run_forever(settings.stale_sweep_interval_seconds),
            name="stale-contract-sweep",
        )

    try:
        yield
    finally:
        if sweep_task is not None:
            sweep_task.cancel()
            try:
                await sweep_task
            except asyncio.CancelledError:
                pass

        dispatcher: AnalysisDispatcher = app.state.dispatcher
        await dispatcher.drain(timeout=settings.llm_timeout)
        await dispatcher.close()
        logger.info("Contract Analysis Service stopped")


def _message_for(detail) -> str:
    if isinstance(detail, str) and detail:
        return detail
    if isinstance(detail, dict) and detail.get("message"):
        return str(detail["message"])
    return "Request failed."


def register_exception_handlers(app: FastAPI) -> None:
    """Every error response is {"message": ...}"""

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        if exc.status_code >= 500:
            logger.error(f"{exc.category} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": _message_for(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"message": "Invalid request."})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler - always return valid JSON"""
        logger.error(f"Unhandled exception on {request.url.path}: {exc.__class__.__name__}")
        return JSONResponse(status_code=500, content={"message": "Internal server error."})


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[BlobStore] = None,
    dispatcher: Optional[AnalysisDispatcher] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """
    Build the application.

    Collaborators default to the ones selected by settings; tests inject
    their own.
    """
    settings = settings or get_settings()
    storage = storage or get_storage()
    dispatcher = dispatcher or get_dispatcher(settings, storage=storage)

    app = FastAPI(
        title="Contract Analysis Service",
        description="Contract ingestion and AI-assisted analysis",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.storage = storage
    app.state.dispatcher = dispatcher
    app.state.ingestion = IngestionCoordinator(
        storage=storage,
        dispatcher=dispatcher,
        max_upload_bytes=settings.max_upload_bytes,
    )

    app.add_middleware(
        RateLimitMiddleware,
        limiter=rate_limiter or build_rate_limiter(settings),
        trust_proxy_headers=settings.trust_proxy_headers,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(contracts_router, prefix="/api/v1")
    return app


app = create_app()
