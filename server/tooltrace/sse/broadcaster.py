"""Live fanout of ledger records to connected SSE observers."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid

from sse_starlette import ServerSentEvent

logger = logging.getLogger(__name__)

RECORD_EVENT = "line"


def encode_frame(data: dict | str, event: str | None = None) -> bytes:
    """Encode one SSE frame: optional ``event:`` line, one ``data:`` line per payload line, blank line."""
    payload = data if isinstance(data, str) else json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return ServerSentEvent(data=payload, event=event, sep="\n").encode()


def encode_comment(text: str) -> bytes:
    return ServerSentEvent(comment=text, sep="\n").encode()


class Subscription:
    """One observer's delivery queue. ``None`` on the queue means the stream is over."""

    def __init__(self, maxsize: int = 1000) -> None:
        self.id = uuid.uuid4().hex[:8]
        self.queue: asyncio.Queue[dict | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def close(self) -> None:
        """Drop anything undelivered and wake the reader with the end-of-stream sentinel."""
        if self.closed:
            return
        self.closed = True
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(None)

    async def get(self) -> dict | None:
        return await self.queue.get()


class Broadcaster:
    """Registry of live observers; every published record goes to all of them."""

    def __init__(self, queue_size: int = 1000) -> None:
        self.queue_size = queue_size
        self._subscribers: dict[str, Subscription] = {}

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self.queue_size)
        self._subscribers[sub.id] = sub
        logger.info("Live observer %s connected (%d total)", sub.id, len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if self._subscribers.pop(sub.id, None) is not None:
            logger.info("Live observer %s disconnected (%d total)", sub.id, len(self._subscribers))

    def publish(self, record: dict) -> None:
        """Deliver to every observer, best-effort. An observer that cannot keep up is dropped."""
        dropped: list[Subscription] = []
        for sub in list(self._subscribers.values()):
            try:
                sub.queue.put_nowait(record)
            except asyncio.QueueFull:
                dropped.append(sub)

        for sub in dropped:
            logger.debug("Dropping live observer %s: queue full", sub.id)
            self.unsubscribe(sub)
            sub.close()

    def close_all(self) -> None:
        for sub in list(self._subscribers.values()):
            self.unsubscribe(sub)
            sub.close()
