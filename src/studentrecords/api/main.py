"""FastAPI application factory."""
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from sqlmodel import SQLModel

from studentrecords.api.routes import portal_auth, sync as sync_routes
from studentrecords.config import get_settings
from studentrecords.db.engine import get_engine
from studentrecords.portal.auth import build_session_provider
from studentrecords.portal.client import PortalGateway


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    engine = get_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        SQLModel.metadata.create_all(engine)

        settings = get_settings()
        async with httpx.AsyncClient(timeout=settings.portal_timeout_seconds) as http_client:
            gateway = PortalGateway.from_settings(settings, http_client=http_client)
            app.state.gateway = gateway
            app.state.session_provider = build_session_provider(settings, gateway)
            yield

    app = FastAPI(
        title="Student Records API",
        description="Portal synchronization backend for the student records portal",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(portal_auth.router, prefix="/portal-auth", tags=["portal-auth"])

    return app


# Module-level app instance for uvicorn
app = create_app()
