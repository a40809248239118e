"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlmodel import SQLModel

from creatorsync.api.routes import sync as sync_routes
from creatorsync.db.engine import get_engine


def create_app(engine=None) -> FastAPI:
    """Build and return the FastAPI app.

    Args:
        engine: Engine to create tables on at startup. Defaults to get_engine().
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        SQLModel.metadata.create_all(engine or get_engine())
        yield

    app = FastAPI(
        title="creatorsync",
        description="Creator content sync engine",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
