"""
In-memory pub/sub for live trade events.

Each subscriber owns a bounded queue and an optional agent filter.
Publishing never blocks: a full queue drops the event for that subscriber
only, and closed subscribers are removed on the next publish.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from clawledger.config import settings
from clawledger.utils.logging import get_logger

logger = get_logger(__name__)

_ids = itertools.count(1)


@dataclass(eq=False)
class Subscriber:
    """One live-feed connection."""
    queue: asyncio.Queue
    agent_id: Optional[str] = None
    id: int = field(default_factory=lambda: next(_ids))
    closed: bool = False
    dropped: int = 0

    def wants(self, agent_id: Optional[str]) -> bool:
        return self.agent_id is None or self.agent_id == agent_id


class BroadcastHub:
    """Fans out events to the global feed and per-agent feeds."""

    def __init__(self, queue_size: Optional[int] = None):
        self._queue_size = queue_size or settings.broadcast_queue_size
        self._subscribers: dict[int, Subscriber] = {}

    @property
    def subscriber_count(self) -> int:
        return sum(1 for s in self._subscribers.values() if not s.closed)

    def subscribe(self, agent_id: Optional[str] = None) -> Subscriber:
        subscriber = Subscriber(queue=asyncio.Queue(maxsize=self._queue_size), agent_id=agent_id)
        self._subscribers[subscriber.id] = subscriber
        logger.debug("Subscriber added", subscriber=subscriber.id, agent_id=agent_id)
        return subscriber

    def set_filter(self, subscriber: Subscriber, agent_id: Optional[str]) -> None:
        """Change which agent a subscriber follows; None means the global feed."""
        subscriber.agent_id = agent_id

    def unsubscribe(self, subscriber: Subscriber) -> None:
        subscriber.closed = True
        self._subscribers.pop(subscriber.id, None)

    def publish(self, event_type: str, agent_id: Optional[str], data: dict[str, Any]) -> int:
        """Deliver an event to matching subscribers. Returns how many received it."""
        message = {
            "type": event_type,
            "agentId": agent_id,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        delivered = 0
        stale: list[int] = []
        for subscriber in list(self._subscribers.values()):
            if subscriber.closed:
                stale.append(subscriber.id)
                continue
            if not subscriber.wants(agent_id):
                continue
            try:
                subscriber.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                subscriber.dropped += 1
                logger.debug("Subscriber queue full, event dropped", subscriber=subscriber.id)

        for subscriber_id in stale:
            self._subscribers.pop(subscriber_id, None)

        return delivered


broadcast_hub = BroadcastHub()
