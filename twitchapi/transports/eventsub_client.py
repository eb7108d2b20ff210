"""
EventSub WebSocket Client - Session Twitch EventSub (transport websocket)

Architecture:
    [Twitch EventSub WS] → handle_message → session_welcome → SubscriptionFanout
                                          → notification    → MessageBus

Session lifecycle:
    - session_welcome: nouvelle session, état remplacé, fan-out en arrière-plan
    - session_reconnect: Twitch demande de migrer vers reconnect_url
      (les subscriptions sont conservées, pas de nouveau fan-out)
    - connexion perdue: reconnexion avec backoff exponentiel (2/4/8/.../60s)
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import aiohttp
import yaml

from core.message_bus import MessageBus
from core.message_types import SystemEvent
from twitchapi.subscriptions import DEFAULT_SUBSCRIPTIONS, EventSubscription, FanoutReport, SubscriptionFanout

LOGGER = logging.getLogger(__name__)

EVENTSUB_WSS = "wss://eventsub.wss.twitch.tv/ws"
NOTIFICATION_TOPIC = "eventsub.notification"


# ============================================================================
# Configuration
# ============================================================================

@dataclass
class EventSubConfig:
    """EventSub client configuration (section ``eventsub:`` du YAML)."""
    subscriptions: List[EventSubscription] = field(default_factory=lambda: list(DEFAULT_SUBSCRIPTIONS))
    ws_backoff_base: int = 2  # backoff base (seconds)
    ws_backoff_max: int = 60  # max backoff (seconds)
    receive_timeout: int = 30  # seconds without any frame before reconnecting

    @classmethod
    def from_yaml(cls, yaml_config: dict) -> "EventSubConfig":
        """Load configuration from YAML config dict."""
        eventsub_cfg = (yaml_config or {}).get("eventsub", {}) or {}

        subscriptions = [EventSubscription.from_dict(item) for item in eventsub_cfg.get("subscriptions", [])]

        return cls(
            subscriptions=subscriptions or list(DEFAULT_SUBSCRIPTIONS),
            ws_backoff_base=eventsub_cfg.get("ws_backoff_base", 2),
            ws_backoff_max=eventsub_cfg.get("ws_backoff_max", 60),
            receive_timeout=eventsub_cfg.get("receive_timeout", 30),
        )

    @classmethod
    def from_file(cls, path: str) -> "EventSubConfig":
        config_path = Path(path)
        if not config_path.exists():
            LOGGER.warning(f"⚠️ Config file not found: {path}, using EventSub defaults")
            return cls()
        with open(config_path, "r", encoding="utf-8") as f:
            return cls.from_yaml(yaml.safe_load(f) or {})

    def backoff(self, attempt: int) -> int:
        return min(self.ws_backoff_base ** attempt, self.ws_backoff_max)


@dataclass
class EventSessionState:
    """payload.session d'un message welcome/reconnect (remplacé en bloc)."""
    id: Optional[str] = None
    status: Optional[str] = None
    connected_at: Optional[str] = None
    keepalive_timeout_seconds: Optional[int] = None
    reconnect_url: Optional[str] = None
    recovery_url: Optional[str] = None

    @classmethod
    def from_payload(cls, session: Dict[str, Any]) -> "EventSessionState":
        return cls(
            id=session.get("id"),
            status=session.get("status"),
            connected_at=session.get("connected_at"),
            keepalive_timeout_seconds=session.get("keepalive_timeout_seconds"),
            reconnect_url=session.get("reconnect_url"),
            recovery_url=session.get("recovery_url"),
        )


# ============================================================================
# Client
# ============================================================================

class EventSubClient:
    """
    Message-driven EventSub session.

    ``handle_message`` is transport-independent; ``run`` is the aiohttp
    loop feeding it.
    """

    def __init__(
        self,
        fanout: SubscriptionFanout,
        bus: Optional[MessageBus] = None,
        config: Optional[EventSubConfig] = None,
        url: str = EVENTSUB_WSS,
    ):
        self.fanout = fanout
        self.bus = bus
        self.config = config or EventSubConfig()
        self.url = url

        self.session = EventSessionState()
        self.last_report: Optional[FanoutReport] = None

        self._reconnect_url: Optional[str] = None
        self._migrating = False
        self._fanout_tasks: Set[asyncio.Task] = set()
        self._run_task: Optional[asyncio.Task] = None
        self._running = False

        LOGGER.info(f"🔌 EventSubClient initialized ({len(self.config.subscriptions)} subscription types)")

    # ==================== MESSAGE DISPATCH ====================

    async def handle_message(self, raw: str) -> None:
        """
        Traite un frame texte EventSub.

        Args:
            raw: JSON {metadata: {message_type, ...}, payload: {...}}
        """
        try:
            message = json.loads(raw)
            metadata = message.get("metadata") or {}
            payload = message.get("payload") or {}
            message_type = metadata.get("message_type")
            session = payload.get("session") or {}
            subscription = payload.get("subscription") or {}
        except (ValueError, AttributeError) as e:
            LOGGER.warning(f"⚠️ Malformed EventSub frame ignored: {e}")
            return

        if message_type == "session_welcome":
            self._on_welcome(session)
        elif message_type == "session_keepalive":
            LOGGER.debug("💓 EventSub keepalive")
        elif message_type == "notification":
            await self._on_notification(metadata, payload, subscription)
        elif message_type == "session_reconnect":
            self._on_reconnect(session)
        elif message_type == "revocation":
            LOGGER.warning(
                f"⚠️ Subscription revoked: {subscription.get('type')} (status={subscription.get('status')})"
            )
        else:
            LOGGER.debug(f"📨 EventSub message ignored: {message_type}")

    def _on_welcome(self, session: Dict[str, Any]) -> None:
        self.session = EventSessionState.from_payload(session)
        LOGGER.info(f"👋 EventSub session welcome: {self.session.id}")

        if self._migrating:
            # Twitch keeps the subscriptions across a session_reconnect
            self._migrating = False
            LOGGER.info("✅ EventSub session migrated, subscriptions kept")
            return

        if not self.session.id:
            LOGGER.error("❌ session_welcome without session id, fan-out skipped")
            return

        task = asyncio.create_task(self._run_fanout(self.session.id))
        self._fanout_tasks.add(task)
        task.add_done_callback(self._fanout_tasks.discard)

    async def _run_fanout(self, session_id: str) -> None:
        try:
            self.last_report = await self.fanout.run(session_id)
        except Exception as e:
            LOGGER.error(f"❌ EventSub fan-out crashed: {e}", exc_info=True)

    def _on_reconnect(self, session: Dict[str, Any]) -> None:
        self.session = EventSessionState.from_payload(session)
        self._reconnect_url = self.session.reconnect_url
        self._migrating = bool(self._reconnect_url)
        LOGGER.info("🔄 EventSub session_reconnect received")

    async def _on_notification(self, metadata: Dict[str, Any], payload: Dict[str, Any],
                               subscription: Dict[str, Any]) -> None:
        subscription_type = metadata.get("subscription_type") or subscription.get("type")
        LOGGER.debug(f"📢 EventSub notification: {subscription_type}")

        if self.bus is None:
            return

        event = SystemEvent(
            kind=f"eventsub.{subscription_type}",
            payload={
                "message_id": metadata.get("message_id"),
                "subscription": subscription,
                "event": payload.get("event") or {},
                "source": "eventsub",
            },
        )
        await self.bus.publish(NOTIFICATION_TOPIC, event)

    # ==================== TRANSPORT ====================

    async def run(self) -> None:
        """Boucle de connexion WebSocket (reconnexion avec backoff)."""
        self._running = True
        attempt = 0
        url = self.url

        async with aiohttp.ClientSession() as http:
            while self._running:
                try:
                    LOGGER.info(f"🚀 Connecting to EventSub WebSocket ({'reconnect' if url != self.url else 'initial'})...")
                    async with http.ws_connect(url, receive_timeout=self.config.receive_timeout) as ws:
                        attempt = 0
                        await self._receive(ws)
                except asyncio.CancelledError:
                    raise
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    LOGGER.warning(f"⚠️ EventSub connection lost: {type(e).__name__}: {e}")

                if not self._running:
                    break

                if self._reconnect_url:
                    url, self._reconnect_url = self._reconnect_url, None
                    continue

                url = self.url
                self._migrating = False
                attempt += 1
                delay = self.config.backoff(attempt)
                LOGGER.info(f"🔄 Reconnecting to EventSub in {delay}s (attempt {attempt})...")
                await asyncio.sleep(delay)

        LOGGER.info("🛑 EventSub loop stopped")

    async def _receive(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self.handle_message(msg.data)
                if self._reconnect_url:
                    return
            elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                break
        LOGGER.warning(f"⚠️ EventSub WebSocket closed (code={ws.close_code})")

    def start(self) -> asyncio.Task:
        if self._run_task and not self._run_task.done():
            LOGGER.warning("⚠️ EventSub client already running")
            return self._run_task
        self._run_task = asyncio.create_task(self.run())
        return self._run_task

    async def stop(self) -> None:
        """Stop the transport loop and wait for any in-flight fan-out."""
        LOGGER.info("🛑 Stopping EventSub WebSocket...")
        self._running = False

        if self._run_task and not self._run_task.done():
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
        self._run_task = None

        if self._fanout_tasks:
            await asyncio.gather(*self._fanout_tasks, return_exceptions=True)

        LOGGER.info("✅ EventSub WebSocket stopped")
