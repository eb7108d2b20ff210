#!/usr/bin/env python3
"""
AonyxEngine Web Backend - FastAPI

Routes OAuth (login/callback) + routes d'info.
L'Engine est injecté par create_app (construit une seule fois par main.py).
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from core.engine import Engine
from web.backend.api.router import router as info_router
from web.backend.auth.router import router as auth_router
from web.backend.config import Settings, get_settings
from web.backend.dependencies import limiter

logger = logging.getLogger(__name__)


def create_app(engine: Engine, settings: Optional[Settings] = None) -> FastAPI:
    """
    Construit l'application FastAPI.

    Args:
        engine: composants partagés (states, providers, pipeline...)
        settings: défaut get_settings()
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown events."""
        logger.info(f"🚀 {settings.application} web backend starting...")
        yield
        logger.info(f"👋 {settings.application} web backend shutting down...")

    app = FastAPI(
        title="AonyxEngine API",
        description="OAuth token lifecycle engine",
        version=settings.version,
        lifespan=lifespan,
    )

    app.state.engine = engine
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])
    app.include_router(info_router, tags=["Info"])

    app.middleware("http")(security_headers)
    return app


# ============================================================
# SECURITY HEADERS MIDDLEWARE
# ============================================================
async def security_headers(request: Request, call_next):
    """Ajoute les headers de sécurité à toutes les réponses."""
    response: Response = await call_next(request)

    # Anti-clickjacking
    response.headers["X-Frame-Options"] = "DENY"

    # Empêche le sniffing MIME
    response.headers["X-Content-Type-Options"] = "nosniff"

    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

    # Only the inline redirect script of the callback page
    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline'; "
        "frame-ancestors 'none'; "
        "base-uri 'self'; "
        "object-src 'none';"
    )

    return response
