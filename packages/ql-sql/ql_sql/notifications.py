"""Per-chat event hub between the optimization pipeline and WebSocket clients."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    OPTIMIZATION_COMPLETE = "optimization_complete"


@dataclass
class ChatEvent:
    type: EventType
    chat_id: int
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "chat_id": self.chat_id,
            **self.data,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class Subscription:
    """Async iterator over the events of one chat, for one subscriber."""

    def __init__(self, chat_id: int, queue: "asyncio.Queue[ChatEvent]"):
        self.chat_id = chat_id
        self.queue = queue

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChatEvent:
        return await self.queue.get()


class NotificationHub:
    """In-process publish/subscribe keyed by chat id.

    Every subscriber owns a bounded queue. ``publish`` never blocks: an event
    for a subscriber whose queue is full is dropped for that subscriber.
    Must be used from a single event loop.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self.maxsize = maxsize
        self._subscribers: Dict[int, List[asyncio.Queue]] = {}

    def publish(self, chat_id: int, event_type: EventType, **data: Any) -> int:
        """Deliver an event to every current subscriber of ``chat_id``.

        Returns:
            Number of subscribers the event was queued for.
        """
        event = ChatEvent(type=event_type, chat_id=chat_id, data=data)
        delivered = 0
        for queue in list(self._subscribers.get(chat_id, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for chat %s: subscriber queue full", event_type.value, chat_id)
        return delivered

    @asynccontextmanager
    async def subscribe(self, chat_id: int) -> AsyncIterator[Subscription]:
        """Register a subscriber for the duration of the ``async with`` block."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers.setdefault(chat_id, []).append(queue)
        try:
            yield Subscription(chat_id, queue)
        finally:
            queues = self._subscribers.get(chat_id, [])
            if queue in queues:
                queues.remove(queue)
            if not queues:
                self._subscribers.pop(chat_id, None)

    def subscriber_count(self, chat_id: int) -> int:
        return len(self._subscribers.get(chat_id, ()))
