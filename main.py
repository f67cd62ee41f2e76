"""
Sales Curiosity integrations backend — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import register_error_handlers
from api.middleware import register_middleware
from api.routes import router as feature_router
from auth.routes import router as auth_router
from config.settings import config
from connectors.encryption import is_encryption_enabled
from connectors.registry import ConnectorRegistry
from connectors.routes import router as connectors_router

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Sales Curiosity Integrations",
        version="1.0.0",
        description="OAuth connections to Gmail, Outlook, Salesforce, HubSpot and Monday.com.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)
    register_error_handlers(app)

    # Routes — feature routes first so /email and /crm never reach /{provider}/…
    app.include_router(auth_router, prefix="/api/auth")
    app.include_router(feature_router, prefix="/api")
    app.include_router(connectors_router, prefix="/api")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.on_event("startup")
    async def on_startup():
        logger.info("Discovering connectors…")
        registry = ConnectorRegistry()
        registry.discover()
        logger.info("Configured connectors: %s", registry.list_configured())
        if not is_encryption_enabled():
            logger.warning("OAuth tokens are stored unencrypted; set TOKEN_ENCRYPTION_KEY")
        logger.info("Application ready to accept requests.")

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
