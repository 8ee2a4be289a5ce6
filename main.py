"""
Farm Connect — connection lifecycle service entry point.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from config.settings import Settings, config
from connectors.credential_store import SqlCredentialStore
from connectors.encryption import TokenCipher
from connectors.manager import ConnectionManager, build_connection_manager
from connectors.routes import router as connectors_router
from database.session import build_engine, build_session_factory, create_tables

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "sqlalchemy.engine"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    manager: Optional[ConnectionManager] = None,
) -> FastAPI:
    """
    Build the app.  Pass ``manager`` to skip database wiring (tests,
    embedding in another service).
    """
    settings = settings or config
    app = FastAPI(
        title="Farm Connect",
        version="1.0.0",
        description="Connection lifecycle manager for farm-data providers.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(connectors_router, prefix="/api/v1/connectors")

    if manager is not None:
        app.state.connection_manager = manager
        return app

    @app.on_event("startup")
    async def on_startup():
        logger.info("Connecting to credential database…")
        engine = build_engine(settings.database_url)
        await create_tables(engine)
        store = SqlCredentialStore(
            build_session_factory(engine),
            TokenCipher(settings.token_encryption_key),
        )
        app.state.engine = engine
        app.state.connection_manager = build_connection_manager(settings, store)
        logger.info(
            "Providers available: %s",
            ", ".join(app.state.connection_manager.registry.list_configured()) or "none",
        )
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
