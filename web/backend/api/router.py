#!/usr/bin/env python3
"""
Info Routes - Greeting, version, health
"""

import time

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from web.backend.config import Settings, get_settings

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
async def index(settings: Settings = Depends(get_settings)):
    return f"hello world from {settings.application}!"


@router.get("/version")
async def version(settings: Settings = Depends(get_settings)):
    return {"application": settings.application, "version": settings.version}


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "timeStamp": int(time.time() * 1000)}
