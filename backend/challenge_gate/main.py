"""FastAPI main application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware

from challenge_gate.api.v1 import challenge
from challenge_gate.config import settings
from challenge_gate.core.database import close_db, init_db
from challenge_gate.core.logging_config import setup_logging
from challenge_gate.middleware.error_handler import ErrorHandlerMiddleware
from challenge_gate.middleware.security_headers import SecurityHeadersMiddleware
from challenge_gate.services.twofactor.manager import get_providers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()
    logger.info("Starting %s %s", settings.APP_NAME, settings.APP_VERSION)

    await init_db()

    # Unknown provider names are reported here rather than on first login
    providers = get_providers()
    logger.info("Two-factor providers: %s", ", ".join(p.provider_id for p in providers) or "none")

    yield

    logger.info("Shutting down %s", settings.APP_NAME)
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Catch uncaught exceptions with PII redaction
app.add_middleware(ErrorHandlerMiddleware)

if settings.ENVIRONMENT == "production":
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


app.include_router(challenge.router, prefix="/login", tags=["Two-factor"])
