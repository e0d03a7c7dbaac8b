"""FastAPI application factory for DevDex.

Creates and configures the FastAPI app with CORS, admin sessions,
error mapping, and all route modules registered.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from devdex.core.exceptions import (
    AnalysisError,
    AuthorizationError,
    ChatError,
    ConflictError,
    ContextTooLargeError,
    DevDexError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    UploadError,
)

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins
_ERROR_STATUS = (
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (ConflictError, 409),
    (AuthorizationError, 403),
    (ContextTooLargeError, 413),
    (ChatError, 502),
    (AnalysisError, 502),
    (StorageError, 502),
    (UploadError, 400),
)


def status_for_error(exc: DevDexError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def create_app(
    settings,
    db_manager,
    project_manager,
    ingestion,
    job_service,
    dispatcher,
    oracle_store,
    admin_gate,
    llm=None,
    storage=None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: DevDexSettings instance
        db_manager: DatabaseManager instance
        project_manager: ProjectManager instance
        ingestion: FileIngestionService instance
        job_service: AnalysisJobService instance
        dispatcher: AnalysisDispatcher instance
        oracle_store: OracleSessionStore instance
        admin_gate: AdminGate instance
        llm: LLMGateway used by analysis and chat (optional, for metrics)
        storage: StorageBackend to close on shutdown (optional)

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await dispatcher.shutdown()
        if storage is not None:
            await storage.close()
        logger.info("DevDex API shut down")

    app = FastAPI(
        title="DevDex API",
        description="Project catalog with AI enrichment and file-grounded chat",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Session middleware (admin login lives in the signed cookie)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.admin.secret_key,
        max_age=settings.admin.session_ttl_hours * 3600,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store shared dependencies on app state
    app.state.settings = settings
    app.state.db_manager = db_manager
    app.state.project_manager = project_manager
    app.state.ingestion = ingestion
    app.state.job_service = job_service
    app.state.dispatcher = dispatcher
    app.state.oracle_store = oracle_store
    app.state.admin_gate = admin_gate
    app.state.llm = llm

    @app.exception_handler(DevDexError)
    async def devdex_error_handler(request: Request, exc: DevDexError):
        status_code = status_for_error(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    # Register routers
    from .routes.auth import router as auth_router
    from .routes.projects import router as projects_router
    from .routes.jobs import router as jobs_router
    from .routes.oracle import router as oracle_router
    from .routes.admin import router as admin_router

    app.include_router(auth_router, prefix="/api")
    app.include_router(projects_router, prefix="/api")
    app.include_router(jobs_router, prefix="/api")
    app.include_router(oracle_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")

    @app.get("/api/health")
    async def health_check():
        return {"status": "ok", "service": "devdex"}

    logger.info("FastAPI app created with all routes registered")
    return app
