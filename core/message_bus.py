"""
🚌 MessageBus - in-process pub/sub

Projector owners publish observer events here; the realtime layer listens.
Fire-and-forget: a slow or failing listener never blocks the publisher.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List

LOGGER = logging.getLogger(__name__)


def _name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class MessageBus:
    """Simple async message bus (pub/sub)"""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}
        self._task_group: List[asyncio.Task] = []

    def subscribe(self, topic: str, handler: Callable):
        """
        Register an async handler on a topic.

        Args:
            topic: Topic name ("observer.event", ...)
            handler: Coroutine function receiving the published data
        """
        self._subscribers.setdefault(topic, []).append(handler)
        LOGGER.info(f"📌 Subscriber added: {topic} -> {_name(handler)}")

    def unsubscribe(self, topic: str, handler: Callable):
        handlers = self._subscribers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)
            LOGGER.info(f"📌 Subscriber removed: {topic} -> {_name(handler)}")

    async def publish(self, topic: str, data: Any):
        """
        Publish on a topic (fire-and-forget).

        Handlers run as tasks created in subscription order, so each handler
        sees the messages of a topic in publish order.
        """
        handlers = self._subscribers.get(topic, [])

        if not handlers:
            LOGGER.debug(f"MessageBus: no subscriber for topic: {topic}")
            return

        LOGGER.debug(f"📤 MessageBus: publish [{topic}] to {len(handlers)} handlers")

        for handler in list(handlers):
            task = asyncio.create_task(self._safe_handle(handler, data, topic))
            self._task_group.append(task)
            task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task):
        if task in self._task_group:
            self._task_group.remove(task)

    async def _safe_handle(self, handler: Callable, data: Any, topic: str):
        try:
            await handler(data)
        except Exception as e:
            LOGGER.error(f"❌ Handler {_name(handler)} failed on topic {topic}: {e}", exc_info=True)

    async def wait_all(self):
        """Wait for in-flight handler tasks (tests, shutdown)."""
        if self._task_group:
            LOGGER.debug(f"⏳ Waiting for {len(self._task_group)} tasks...")
            await asyncio.gather(*list(self._task_group), return_exceptions=True)

    def get_stats(self) -> Dict[str, int]:
        return {
            "topics": len(self._subscribers),
            "subscribers": sum(len(h) for h in self._subscribers.values()),
            "active_tasks": len(self._task_group),
        }
