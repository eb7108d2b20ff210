"""
📡 Subscription Fan-out - Ré-abonnement EventSub de tout le roster

Déclenché à chaque session_welcome:
    roster → (par utilisateur, en parallèle) token valide → POST subscriptions

Bulkhead: asyncio.gather(return_exceptions=True), l'échec d'un utilisateur
n'affecte jamais les autres. Pas de retry dans le même welcome.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import httpx

from core.errors import SubscriptionError
from database.manager import DatabaseManager
from twitchapi.auth_manager import DEFAULT_PROVIDER, DEFAULT_PURPOSE, AuthManager

LOGGER = logging.getLogger(__name__)

SUBSCRIPTION_ENDPOINT = "https://api.twitch.tv/helix/eventsub/subscriptions"


@dataclass(frozen=True)
class EventSubscription:
    """
    One EventSub type to create per subscriber.

    ``condition_keys`` are filled with the subscriber's provider user id.
    """
    type: str
    version: str = "1"
    condition_keys: tuple = ("broadcaster_user_id", "user_id")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventSubscription":
        return cls(
            type=data["type"],
            version=str(data.get("version", "1")),
            condition_keys=tuple(data.get("condition", ("broadcaster_user_id", "user_id"))),
        )

    def body(self, provider_user_id: str, session_id: str) -> Dict[str, Any]:
        return {
            "type": self.type,
            "version": self.version,
            "condition": {key: provider_user_id for key in self.condition_keys},
            "transport": {"method": "websocket", "session_id": session_id},
        }


DEFAULT_SUBSCRIPTIONS = (EventSubscription(type="channel.chat.message", version="1"),)


@dataclass
class SubscriberOutcome:
    """Résultat pour un utilisateur du roster."""
    user_id: str
    subscribed: List[str] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def reason(self) -> Optional[str]:
        if self.error is None:
            return None
        return getattr(self.error, "reason", type(self.error).__name__)


@dataclass
class FanoutReport:
    session_id: str
    outcomes: List[SubscriberOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> List[str]:
        return [o.user_id for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[str]:
        return [o.user_id for o in self.outcomes if not o.ok]


class SubscriptionFanout:
    """Creates the configured EventSub subscriptions for every roster user."""

    def __init__(
        self,
        db: DatabaseManager,
        auth: AuthManager,
        http: httpx.AsyncClient,
        client_id: str,
        subscriptions: Iterable[EventSubscription] = DEFAULT_SUBSCRIPTIONS,
        endpoint: str = SUBSCRIPTION_ENDPOINT,
        provider: str = DEFAULT_PROVIDER,
        purpose: str = DEFAULT_PURPOSE,
    ):
        self.db = db
        self.auth = auth
        self.http = http
        self.client_id = client_id
        self.subscriptions = list(subscriptions)
        self.endpoint = endpoint
        self.provider = provider
        self.purpose = purpose

    async def run(self, session_id: str) -> FanoutReport:
        """
        Abonne tout le roster à la session EventSub.

        Args:
            session_id: ID de la session WebSocket (payload.session.id)

        Returns:
            FanoutReport (un SubscriberOutcome par utilisateur)
        """
        report = FanoutReport(session_id=session_id)

        try:
            roster = await self.db.run(self.db.list_chatbots)
        except Exception as e:
            LOGGER.error(f"❌ Failed to load chatbot roster: {e}")
            return report

        user_ids = [row["user_id"] for row in roster]
        if not user_ids:
            LOGGER.info("📭 Roster vide, aucune subscription à créer")
            return report

        LOGGER.info(f"🚀 Subscribing {len(user_ids)} users in parallel (session {session_id})...")
        results = await asyncio.gather(
            *(self._subscribe_user(user_id, session_id) for user_id in user_ids),
            return_exceptions=True,
        )

        for user_id, result in zip(user_ids, results):
            if isinstance(result, BaseException):
                reason = getattr(result, "reason", type(result).__name__)
                LOGGER.error(f"❌ [{reason}] Subscription failed for user {user_id}: {result}")
                report.outcomes.append(SubscriberOutcome(user_id=user_id, error=result))
            else:
                report.outcomes.append(result)

        LOGGER.info(
            f"📊 EventSub fan-out done: succeeded={len(report.succeeded)} failed={len(report.failed)}"
        )
        return report

    async def _subscribe_user(self, user_id: str, session_id: str) -> SubscriberOutcome:
        token = await self.auth.get_valid_token(user_id, self.provider, self.purpose)
        if not token.provider_user_id:
            raise SubscriptionError("no provider user id stored", user_id=user_id)

        outcome = SubscriberOutcome(user_id=user_id)
        for subscription in self.subscriptions:
            await self._create_subscription(user_id, token.token, token.provider_user_id,
                                            subscription, session_id)
            outcome.subscribed.append(subscription.type)

        LOGGER.info(f"✅ Subscribed {outcome.subscribed} for user {user_id}")
        return outcome

    async def _create_subscription(self, user_id: str, access_token: str, provider_user_id: str,
                                   subscription: EventSubscription, session_id: str) -> None:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Client-Id": self.client_id,
            "Content-Type": "application/json",
        }

        try:
            response = await self.http.post(
                self.endpoint,
                json=subscription.body(provider_user_id, session_id),
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise SubscriptionError("subscription endpoint unreachable", user_id=user_id,
                                    type=subscription.type) from e

        if response.status_code == 401:
            # Next welcome refreshes the token
            self.auth.invalidate_access_token(user_id, self.provider, self.purpose)

        if not response.is_success:
            raise SubscriptionError(
                "subscription rejected",
                user_id=user_id,
                type=subscription.type,
                status=response.status_code,
                message=_error_message(response),
            )


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("message") if isinstance(body, dict) else None


__all__ = [
    "EventSubscription",
    "FanoutReport",
    "SubscriberOutcome",
    "SubscriptionFanout",
    "DEFAULT_SUBSCRIPTIONS",
]
