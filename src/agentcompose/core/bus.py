"""
Asyncio event bus that announces lifecycle stage completions.

Events are delivered one at a time in publish order, each handler awaited in
subscription order, so subscribers observe stages exactly as the lifecycle
ran them. `stop` returns only after every event published before it has been
delivered.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .contracts import StageCompleted

logger = logging.getLogger(__name__)


StageHandler = Callable[[str, StageCompleted], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    topic: str
    handler: StageHandler


class EventBus:
    """Ordered publish/subscribe for `StageCompleted` events keyed by topic."""

    def __init__(self, *, queue_size: int = 64) -> None:
        self._queue: asyncio.Queue[tuple[str, StageCompleted] | None] = asyncio.Queue(
            maxsize=queue_size
        )
        self._handlers: dict[str, list[StageHandler]] = defaultdict(list)
        self._delivery: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._delivery is not None

    def subscribe(self, topic: str, handler: StageHandler) -> Subscription:
        self._handlers[topic].append(handler)
        return Subscription(topic=topic, handler=handler)

    def unsubscribe(self, subscription: Subscription) -> None:
        handlers = self._handlers.get(subscription.topic, [])
        if subscription.handler in handlers:
            handlers.remove(subscription.handler)

    async def publish(self, topic: str, event: StageCompleted) -> None:
        await self._queue.put((topic, event))

    async def start(self) -> None:
        if self._delivery is None:
            self._delivery = asyncio.create_task(self._deliver(), name="agentcompose-bus")

    async def stop(self) -> None:
        """Flush pending events, then end delivery."""
        if self._delivery is None:
            return
        await self._queue.put(None)
        await self._delivery
        self._delivery = None

    async def _deliver(self) -> None:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            topic, event = item
            for handler in tuple(self._handlers.get(topic, ())):
                try:
                    await handler(topic, event)
                except Exception:
                    logger.exception("Handler %r failed for %s (%s)", handler, topic, event.stage)


__all__ = ["EventBus", "StageHandler", "Subscription"]
