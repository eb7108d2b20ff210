#!/usr/bin/env python3
"""
OAuth - Routes d'authentification (login + callback)
"""

import html
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from core.authorization import CallbackParams
from core.engine import Engine
from core.errors import AonyxError, StorageError, UnauthenticatedError, UnknownProviderError
from web.backend.config import Settings, get_settings
from web.backend.dependencies import get_caller_id, get_engine, limiter

logger = logging.getLogger(__name__)
router = APIRouter()

DEFAULT_PURPOSE = "chatbot"


def redirect_html(message: str, timeout_seconds: int = 5, redirect: str = "/") -> str:
    """Page HTML avec redirection client différée."""
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>Redirecting...</title>
    <script>setTimeout(() => {{ window.location.replace({json.dumps(redirect)}) }}, 1000 * {int(timeout_seconds)});</script>
</head>
<body>
    <div>{html.escape(message)}</div>
    <br>
    <p>You will be redirected in {int(timeout_seconds)} seconds...</p>
</body>
</html>
"""


def _error_json(status_code: int, reason: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": reason, "detail": detail})


@router.get("/v1/{provider}/login")
@limiter.limit("20/minute")
async def login(
    request: Request,
    provider: str,
    purpose: str = Query(DEFAULT_PURPOSE),
    force_verify: bool = Query(False),
    caller_id: Optional[str] = Depends(get_caller_id),
    engine: Engine = Depends(get_engine),
):
    """
    Démarre le flow OAuth pour l'utilisateur authentifié.
    Redirige vers la page d'autorisation du provider.
    """
    if not caller_id:
        logger.warning(f"❌ [{request.url.path}] {UnauthenticatedError.reason}")
        return _error_json(401, UnauthenticatedError.reason, "authentication required")

    try:
        oauth_provider = engine.providers.get(provider)
    except UnknownProviderError as e:
        logger.warning(f"❌ [{request.url.path}] {e.reason} provider={provider}")
        return _error_json(404, e.reason, f"unknown provider: {provider}")

    try:
        auth_state = await engine.states.create(caller_id, oauth_provider.name, purpose)
    except StorageError as e:
        logger.error(f"❌ [{request.url.path}] {e.reason} user={caller_id}: {e}")
        return _error_json(500, e.reason, "could not start the login flow")

    logger.info(f"🔐 OAuth redirect to {oauth_provider.name} for user {caller_id} ({purpose})")
    return RedirectResponse(
        url=oauth_provider.authorize_url(auth_state.state, force_verify=force_verify),
        status_code=302,
    )


@router.get("/v1/callback", response_class=HTMLResponse)
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    scope: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    caller_id: Optional[str] = Depends(get_caller_id),
    engine: Engine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    """
    Callback OAuth (redirect_uri des providers).
    Échange le code, vérifie scopes + identité, stocke les tokens.
    """
    params = CallbackParams(
        code=code,
        state=state,
        scope=scope,
        error=error,
        error_description=error_description,
    )

    try:
        outcome = await engine.pipeline.handle_callback(caller_id, params)
    except AonyxError as e:
        logger.error(f"❌ [{request.url.path}] {e.reason} user={caller_id}: {e}")
        return HTMLResponse(
            redirect_html("authentication failed", settings.redirect_timeout_seconds, settings.redirect_home),
            status_code=400,
        )

    logger.info(f"✅ [{request.url.path}] {outcome.provider} linked for user {outcome.user_id}")
    return HTMLResponse(
        redirect_html("authentication successful!", settings.redirect_timeout_seconds, settings.redirect_home),
        status_code=200,
    )
