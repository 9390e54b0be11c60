import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Set

logger = logging.getLogger(__name__)


class UpdateBroker:
    """In-process publish/subscribe channel for "room changed" signals.

    Each subscriber owns a queue; publishing puts ``{"code": code}`` on the
    queue of every subscriber to that room. Subscribers re-fetch whatever
    they need, so the payload stays minimal.
    """

    def __init__(self, max_pending: int = 100):
        # Room code -> queues of connected subscribers
        self.subscribers: Dict[str, Set[asyncio.Queue]] = {}
        self.max_pending = max_pending

    def subscriber_count(self, code: str = None) -> int:
        if code is not None:
            return len(self.subscribers.get(code, ()))
        return sum(len(queues) for queues in self.subscribers.values())

    def _register(self, code: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_pending)
        self.subscribers.setdefault(code, set()).add(queue)
        return queue

    def _unregister(self, code: str, queue: asyncio.Queue) -> None:
        queues = self.subscribers.get(code)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self.subscribers[code]

    @asynccontextmanager
    async def subscribe(self, code: str) -> AsyncIterator[asyncio.Queue]:
        queue = self._register(code)
        logger.info("Subscriber joined room %s (%d listening)", code, self.subscriber_count(code))
        try:
            yield queue
        finally:
            self._unregister(code, queue)
            logger.info("Subscriber left room %s (%d listening)", code, self.subscriber_count(code))

    def publish(self, code: str) -> int:
        """Signal that ``code`` changed. Returns how many subscribers were notified."""
        delivered = 0
        for queue in list(self.subscribers.get(code, ())):
            try:
                queue.put_nowait({"code": code})
                delivered += 1
            except asyncio.QueueFull:
                # subscriber already has updates pending
                pass
        logger.debug("Published update for room %s to %d subscribers", code, delivered)
        return delivered
