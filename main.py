"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import connections, oauth, providers, sync, webhooks
from config import settings
from integrations.provider_registry import get_provider_registry
from logging_config import setup_logging
from services.provider_service import ProviderService

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the provider configuration check on startup."""
    try:
        result = ProviderService.check_configuration(get_provider_registry())
        if result.ok:
            logger.info("All providers configured")
    except Exception:
        logger.warning("Provider configuration check failed on startup", exc_info=True)
    yield


app = FastAPI(
    title="Bank Sync",
    description="Bank and accounting data sync across providers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.APP_BASE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(sync.router)
app.include_router(oauth.router)
app.include_router(connections.router)
app.include_router(webhooks.router)
app.include_router(providers.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
