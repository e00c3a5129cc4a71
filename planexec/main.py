"""
Plan Execution Engine - FastAPI Application.

Inspection API over persisted execution sessions. It provides endpoints for:
- Listing and fetching sessions
- Per-plan execution statistics
- Retrying finished sessions and cancelling unfinished ones

Sessions are driven by SessionManager inside the host application; no
endpoint accepts human input or resumes a session.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from planexec import __version__
from planexec.api import router as sessions_router
from planexec.config import get_settings
from planexec.db.session import close_db, init_db
from planexec.executors.base import FunctionProvider
from planexec.logging import get_logger, setup_logging
from planexec.storage import create_storage
from planexec.storage.base import SessionStorage

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup and shutdown of the API process.

    Builds the configured storage backend unless one was injected, and
    creates the tables when it is the SQL backend.
    """
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)

    owns_storage = getattr(app.state, "storage", None) is None
    if owns_storage:
        if settings.storage_backend == "sql":
            await init_db()
        app.state.storage = create_storage(settings)

    logger.info(
        "server_starting",
        port=settings.server_port,
        storage_backend=settings.storage_backend,
    )

    yield

    logger.info("server_stopping")
    if owns_storage and settings.storage_backend == "sql":
        await close_db()


def create_app(
    storage: Optional[SessionStorage] = None,
    provider: Optional[FunctionProvider] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        storage: Session storage; the configured backend is used if omitted
        provider: Function provider handed to the session manager
    """
    app = FastAPI(
        title="Plan Execution Engine",
        description="""
        Durable, resumable execution of pre-authored plans.

        ## Key Features
        - **Deterministic execution**: steps run strictly in id order
        - **Human input**: sessions pause at user input steps and resume later
        - **Persistence**: every step result is saved before the next step starts
        - **Retry**: re-run a finished session from any step
        """,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.storage = storage
    app.state.provider = provider

    # CORS: any origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ===================
    # Health Check Endpoint
    # ===================

    @app.get("/health")
    async def health_check():
        """Liveness probe for orchestrators and load balancers."""
        settings = get_settings()
        return {
            "status": "healthy",
            "service": "planexec",
            "version": __version__,
            "storage_backend": settings.storage_backend,
        }

    @app.get("/")
    async def root():
        """Service name, version and entry points."""
        return {
            "name": "Plan Execution Engine",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "endpoints": {
                "sessions": "/v1/sessions",
                "stats": "/v1/sessions/stats/{plan_id}",
            },
        }

    app.include_router(sessions_router)
    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("planexec.main:app", host=settings.server_host, port=settings.server_port)


if __name__ == "__main__":
    run()
