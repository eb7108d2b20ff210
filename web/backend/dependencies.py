#!/usr/bin/env python3
"""
Dépendances FastAPI partagées
"""

import logging
import time
from typing import Optional

import jwt
from fastapi import Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.engine import Engine
from web.backend.config import Settings, get_settings

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
MOCK_TOKEN_EXPIRE_SECONDS = 60 * 60

# Rate limiter (app.state.limiter pointe sur la même instance)
limiter = Limiter(key_func=get_remote_address)


# ============================================================
# ENGINE
# ============================================================

def get_engine(request: Request) -> Engine:
    """Engine construit au démarrage (app.state.engine)."""
    return request.app.state.engine


# ============================================================
# AUTH DEPENDENCIES
# ============================================================

def create_mock_token(settings: Settings) -> str:
    """
    JWT du mock user (mode development uniquement).

    Returns:
        JWT HS256 signé avec jwt_secret
    """
    now = int(time.time())
    payload = {
        "sub": settings.mock_user_id,
        "email": settings.mock_user_email,
        "aud": settings.jwt_audience,
        "role": "authenticated",
        "iat": now,
        "exp": now + MOCK_TOKEN_EXPIRE_SECONDS,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_caller_token(token: str, settings: Settings) -> Optional[str]:
    """
    Vérifie un JWT appelant.

    Returns:
        user id (claim sub) ou None si invalide/expiré
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[JWT_ALGORITHM],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError:
        logger.info("Caller token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"⚠️ Invalid caller token: {type(e).__name__}")
        return None

    return payload.get("sub") or None


def _extract_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return request.cookies.get("session") or None


def get_caller_id(request: Request, settings: Settings = Depends(get_settings)) -> Optional[str]:
    """
    Identité de l'appelant (Bearer header ou cookie session).

    En development sans token, un JWT mock user est généré.

    Returns:
        user id ou None si anonyme
    """
    token = _extract_token(request)

    if token is None and settings.is_dev:
        logger.debug(f"Dev mode: using mock user {settings.mock_user_id}")
        token = create_mock_token(settings)

    if token is None:
        return None

    return decode_caller_token(token, settings)
