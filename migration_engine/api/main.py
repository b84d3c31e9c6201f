"""FastAPI application entry point."""

from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .context import engine_context
from .routes import batches, dedup, snapshots, retries
from ..executor import MigrationExecutor


def create_app(executor: Optional[MigrationExecutor] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        executor: Executor the routes act through. May be configured later
            via ``engine_context.configure``.

    Returns:
        Configured FastAPI application
    """
    if executor is not None:
        engine_context.configure(executor)

    application = FastAPI(
        title="Migration Engine API",
        description="API for inspecting migration batches, duplicates, snapshots and retries",
        version="0.1.0",
    )

    # CORS middleware for the review frontend
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(batches.router, prefix="/api/batches", tags=["batches"])
    application.include_router(dedup.router, prefix="/api/dedup", tags=["dedup"])
    application.include_router(snapshots.router, prefix="/api/snapshots", tags=["snapshots"])
    application.include_router(snapshots.rollbacks_router, prefix="/api/rollbacks", tags=["rollbacks"])
    application.include_router(retries.router, prefix="/api/retries", tags=["retries"])

    @application.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return application


app = create_app()
