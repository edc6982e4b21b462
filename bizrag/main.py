import asyncio
import os
import subprocess
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bizrag.api.admin.router import router as admin_router
from bizrag.api.assistant.router import router as assistant_router
from bizrag.api.conversations.router import router as conversations_router
from bizrag.config.logger import app_logger, log_request_end, log_request_error, log_request_start
from bizrag.config.settings import settings
from bizrag.db.db import close_db, init_db, is_initialized, ping_database
from bizrag.services.chat_sessions import get_session_store
from bizrag.services.embeddings import get_embedding_provider
from bizrag.services.entity_sources import build_business_client, build_default_sources
from bizrag.services.generation import get_provider_registry
from bizrag.services.indexing import get_indexing_pipeline
from bizrag.services.sync_orchestrator import SyncOrchestrator, build_registry, set_sync_orchestrator
from bizrag.services.sync_status import InMemorySyncStatusRepository, SqlSyncStatusRepository
from bizrag.utils.errors import NotInitializedError
from bizrag.utils.responses import error_response


_git_sha_cache: Optional[str] = None


def get_git_sha() -> str:
    """Get the current Git commit SHA (cached to avoid blocking)."""
    global _git_sha_cache
    if _git_sha_cache is not None:
        return _git_sha_cache

    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            check=True,
            timeout=1.0,
        )
        _git_sha_cache = result.stdout.strip()[:8]
        return _git_sha_cache
    except (subprocess.CalledProcessError, FileNotFoundError, subprocess.TimeoutExpired):
        _git_sha_cache = "local-dev"
        return _git_sha_cache


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager for startup and shutdown events."""
    # Startup
    app_logger.info(f"{settings.APP_NAME} starting up")
    app_logger.info("Logging system active - logs will be saved to logs/ directory")

    await init_db()

    embedder = get_embedding_provider()
    pipeline = get_indexing_pipeline()
    try:
        await embedder.initialize()
        await pipeline.initialize()
    except NotInitializedError as e:
        app_logger.error(f"Search stack unavailable: {e}")
        app_logger.warning("Search and sync will fail fast until the embedding provider and vector store are reachable")

    providers = get_provider_registry()
    probes = await providers.probe_all()
    if not any(probes.values()):
        app_logger.warning("No generation provider reachable; chat requests will fail")

    business_client = build_business_client()
    if is_initialized():
        repository = SqlSyncStatusRepository()
    else:
        app_logger.warning("Database unavailable; sync checkpoints are kept in memory only")
        repository = InMemorySyncStatusRepository()
    orchestrator = SyncOrchestrator(pipeline, repository, build_registry(build_default_sources(business_client)))
    set_sync_orchestrator(orchestrator)
    await orchestrator.load_statuses()

    tasks: List[asyncio.Task] = []
    if pipeline.is_ready():
        tasks.append(
            asyncio.create_task(
                orchestrator.run_periodic(settings.AI_SYNC_INTERVAL_MINUTES, initial=settings.AI_SYNC_ON_STARTUP)
            )
        )
        app_logger.info(f"Scheduled sync every {settings.AI_SYNC_INTERVAL_MINUTES} minutes")
    else:
        app_logger.warning("Scheduled sync disabled: vector store not ready")
    tasks.append(asyncio.create_task(get_session_store().run_sweeper()))

    app_logger.info("Application initialized successfully")

    yield

    # Shutdown
    app_logger.info(f"{settings.APP_NAME} shutting down")
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await providers.aclose()
    await business_client.aclose()
    set_sync_orchestrator(None)
    await close_db()
    app_logger.info("Application shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    servers=[
        {
            "url": "http://localhost:8000",
            "description": "Development server",
        },
    ],
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests with timing information using Loguru."""
    start_time = datetime.now()

    log_request_start(request)

    try:
        response = await call_next(request)
        process_time = (datetime.now() - start_time).total_seconds()
        log_request_end(request, response.status_code, process_time)
        return response

    except Exception as e:
        process_time = (datetime.now() - start_time).total_seconds()
        log_request_error(request, e, process_time)
        raise


@app.exception_handler(NotInitializedError)
async def not_initialized_handler(request: Request, exc: NotInitializedError):
    """Components that have not reported ready map to 503."""
    app_logger.warning(f"{request.method} {request.url.path} hit an unready component: {exc}")
    return JSONResponse(
        status_code=503,
        content=error_response("Service not ready", detail=str(exc)).model_dump(mode="json"),
    )


@app.get("/", tags=["health"])
async def root():
    """Root endpoint with basic API information."""
    app_logger.info("Root endpoint accessed")
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "status": "operational",
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/status", tags=["health"])
async def status():
    """Status endpoint with build information for CI/CD monitoring."""
    app_logger.info("Status endpoint accessed")

    # Get build information from environment variables (CI-injected)
    build_number = os.getenv("BUILD_NUMBER", "local-dev")
    git_sha = os.getenv("GIT_SHA", os.getenv("GITHUB_SHA", get_git_sha()))
    environment = os.getenv("ENVIRONMENT", os.getenv("ENV", "development"))

    return {
        "status": "ok",
        "build": build_number,
        "sha": git_sha,
        "env": environment,
    }


@app.get("/health", tags=["health"])
async def health():
    """Readiness of the search stack plus a database ping."""
    db_ok, db_message = await ping_database()
    pipeline = get_indexing_pipeline()
    body = {
        "status": "ok",
        "db": "available" if db_ok else "unavailable",
        "db_message": db_message,
        "vector_store": "ready" if pipeline.is_ready() else "not_ready",
        "embeddings": "ready" if pipeline.embedder.is_ready() else "not_ready",
    }
    if not (db_ok and pipeline.is_ready()):
        body["status"] = "degraded"
        return JSONResponse(status_code=503, content=body)
    return body


@app.get("/health/db", tags=["health"])
async def health_db():
    """Database health endpoint: runs SELECT 1 against the checkpoint store."""
    is_ok, message = await ping_database()
    if not is_ok:
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "db": "unavailable", "message": message},
        )
    return {"status": "ok", "db": "available", "message": message}


# Include API routers
app.include_router(assistant_router)
app.include_router(conversations_router)
app.include_router(admin_router)


if __name__ == "__main__":
    import uvicorn

    app_logger.info(f"Starting {settings.APP_NAME} server")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_config=None,  # Use our custom logger
    )
