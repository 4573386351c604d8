"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlmodel import SQLModel

from uxkit.db.engine import get_engine
from uxkit.api.routes import packs, sync as sync_routes


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    engine = get_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        SQLModel.metadata.create_all(engine)
        yield

    app = FastAPI(
        title="UX Kit API",
        description="Pack catalog and Stripe sync admin backend",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(packs.router, prefix="/packs", tags=["packs"])
    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
