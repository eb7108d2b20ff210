"""
🚌 MessageBus - Pub/sub interne

Les notifications EventSub sont publiées ici (topic "eventsub.notification")
sans que le transport connaisse les consommateurs.
Handlers lancés en tasks (fire-and-forget): un handler lent ou en erreur
ne bloque jamais la boucle de réception.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Set

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]


class MessageBus:
    """Bus de messages asynchrone (pub/sub par topic)"""

    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, topic: str, handler: Handler) -> None:
        """
        Abonne un handler async à un topic.

        Args:
            topic: "eventsub.notification", ...
            handler: coroutine function recevant le message publié
        """
        self._subscribers.setdefault(topic, []).append(handler)
        LOGGER.info(f"📌 Subscriber ajouté: {topic} -> {getattr(handler, '__name__', handler)}")

    async def publish(self, topic: str, data: Any) -> int:
        """
        Publie un message (fire-and-forget).

        Returns:
            Nombre de handlers notifiés
        """
        handlers = list(self._subscribers.get(topic, []))
        if not handlers:
            LOGGER.debug(f"MessageBus: aucun subscriber pour {topic}")
            return 0

        for handler in handlers:
            task = asyncio.create_task(self._safe_handle(handler, data, topic))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return len(handlers)

    async def _safe_handle(self, handler: Handler, data: Any, topic: str) -> None:
        try:
            await handler(data)
        except Exception as e:
            LOGGER.error(f"❌ Erreur handler {getattr(handler, '__name__', handler)} sur {topic}: {e}",
                         exc_info=True)

    async def wait_all(self) -> None:
        """Attend la fin des handlers en cours (arrêt propre, tests)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def get_stats(self) -> Dict[str, int]:
        return {
            "topics": len(self._subscribers),
            "subscribers": sum(len(h) for h in self._subscribers.values()),
            "active_tasks": len(self._pending),
        }
