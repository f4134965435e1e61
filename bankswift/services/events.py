"""
Live-update connection registry.

One ``ConnectionManager`` lives on ``app.state``. Each SSE connection owns a
``Subscription`` for as long as the response streams. Transfers are
committed in threadpool workers, so broadcasts hand events to each
subscriber's event loop with ``call_soon_threadsafe``.
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Set

logger = logging.getLogger(__name__)

TRANSFER_CREATED = "transfer.created"
TRANSFER_UPDATED = "transfer.updated"


@dataclass(eq=False)
class Subscription:
    user_id: int
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue = field(repr=False)
    dropped: int = 0

    def offer(self, event: Dict[str, Any]) -> None:
        """Runs on the subscriber's loop."""
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Live update queue full for user %s, dropped %s", self.user_id, event.get("type"))


class ConnectionManager:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscriptions: Dict[int, Set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, user_id: int) -> Subscription:
        """Register a subscriber. Must be called from inside its event loop."""
        sub = Subscription(
            user_id=user_id,
            loop=asyncio.get_running_loop(),
            queue=asyncio.Queue(maxsize=self.queue_size),
        )
        with self._lock:
            self._subscriptions.setdefault(user_id, set()).add(sub)
        logger.info("User %s subscribed to live updates", user_id)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(sub.user_id)
            if subs is not None:
                subs.discard(sub)
                if not subs:
                    del self._subscriptions[sub.user_id]
        logger.info("User %s unsubscribed from live updates", sub.user_id)

    def subscriber_count(self, user_id: int = None) -> int:
        with self._lock:
            if user_id is not None:
                return len(self._subscriptions.get(user_id, ()))
            return sum(len(subs) for subs in self._subscriptions.values())

    def broadcast(self, event_type: str, data: Any, user_ids: Iterable[int]) -> int:
        """
        Queue an event for every subscriber of the given users.

        Safe to call from any thread. Returns the number of subscriptions
        the event was handed to.
        """
        event = {"type": event_type, "data": data}
        with self._lock:
            targets = [
                sub
                for user_id in set(user_ids)
                for sub in self._subscriptions.get(user_id, ())
            ]

        delivered = 0
        for sub in targets:
            try:
                sub.loop.call_soon_threadsafe(sub.offer, event)
                delivered += 1
            except RuntimeError:
                # Loop already closed; the stream's finally block will unsubscribe
                logger.debug("Skipping subscriber of user %s on a closed loop", sub.user_id)
        return delivered


def format_sse(event: Dict[str, Any]) -> str:
    """Frame an event for a text/event-stream response."""
    return f"event: {event['type']}\ndata: {json.dumps(event['data'], default=str)}\n\n"
