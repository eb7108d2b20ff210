#!/usr/bin/env python3
"""
AonyxEngine - OAuth token lifecycle engine

Un seul process asyncio:
    - FastAPI (uvicorn): /auth/v1/{provider}/login, /auth/v1/callback, /, /version, /health
    - EventSub WebSocket: fan-out des subscriptions à chaque session_welcome
    - Sweep périodique des states OAuth expirés
"""

import argparse
import asyncio
import logging
import pathlib
import sys

import uvicorn

from core.engine import build_engine
from twitchapi.transports.eventsub_client import EventSubClient, EventSubConfig
from web.backend.config import get_settings
from web.backend.main import create_app

# Logger will be configured in setup_logging()
LOGGER = logging.getLogger(__name__)


def parse_args():
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(description="AonyxEngine - OAuth token lifecycle engine")
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to YAML config file (default: CONFIG_FILE or config/config.yaml)'
    )
    parser.add_argument(
        '--db',
        type=str,
        default=None,
        help='Path to database file (default: DATABASE_PATH or aonyxengine.db)'
    )
    parser.add_argument(
        '--no-eventsub',
        action='store_true',
        help='Serve OAuth routes only, without the EventSub WebSocket'
    )
    return parser.parse_args()


def setup_logging(level: str = "INFO", log_file: str = ""):
    """
    Configure root logger (console + fichier optionnel).

    Args:
        level: DEBUG, INFO, WARNING...
        log_file: chemin du fichier de log ("" = console seulement)
    """
    handlers = [logging.StreamHandler()]
    if log_file:
        path = pathlib.Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
        handlers=handlers,
        force=True  # Override any existing config
    )


def bind_host(settings) -> str:
    """Loopback only in development, HOST otherwise."""
    return "127.0.0.1" if settings.is_dev else settings.host


async def main():
    args = parse_args()
    settings = get_settings()

    if args.config:
        settings.config_file = args.config
    if args.db:
        settings.database_path = args.db

    setup_logging(settings.log_level, settings.log_file)

    missing = settings.missing_required()
    if settings.is_dev:
        LOGGER.info("🛠️ Development mode (mock user enabled)")
        LOGGER.info("Required env: AONYXENGINE_SECRET_KEY, TWITCH_CLIENT_ID, TWITCH_CLIENT_SECRET, JWT_SECRET")
        if missing:
            LOGGER.warning(f"⚠️ Missing env: {', '.join(missing)}")
    elif missing:
        LOGGER.error(f"❌ Missing required env: {', '.join(missing)}")
        sys.exit(1)

    eventsub_config = EventSubConfig.from_file(settings.config_file)
    engine = build_engine(settings, eventsub_config=eventsub_config)
    app = create_app(engine, settings)

    engine.states.start_sweeper()
    LOGGER.info(f"🧹 State sweeper started (every {settings.state_ttl_seconds}s)")

    eventsub_client = None
    if settings.eventsub_enabled and not args.no_eventsub:
        eventsub_client = EventSubClient(
            fanout=engine.fanout,
            bus=engine.bus,
            config=eventsub_config,
            url=settings.twitch_event_wss,
        )
        eventsub_client.start()
    else:
        LOGGER.info("EventSub disabled")

    server = uvicorn.Server(uvicorn.Config(
        app,
        host=bind_host(settings),
        port=settings.port,
        log_level=settings.log_level.lower(),
    ))

    try:
        await server.serve()
    finally:
        LOGGER.info("Arret...")
        if eventsub_client:
            await eventsub_client.stop()
        await engine.bus.wait_all()
        await engine.aclose()
        LOGGER.info("Termine")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nAu revoir !")
