"""Join "before call" observations to later completion signals.

The host fires an unreliable ``before_tool_call`` and, separately, a more
reliable ``tool_result_persist`` that carries no call identifier shared
with it. Starts are queued per (session, tool) and the oldest live one is
handed to the next completion: a FIFO heuristic that holds as long as
calls to the same tool in one session complete in the order they started.
There is no stronger identifier to match on.

Queues are bounded (oldest dropped on overflow). Entries older than the
match window are evicted on every access to their key, and at most once
per window a sweep releases keys whose entries have all expired, so pairs
that are never touched again do not pin memory.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

DEFAULT_QUEUE_CAP = 40
DEFAULT_MAX_AGE_MS = 30_000


def _now_ms() -> int:
    return int(time.monotonic() * 1000)


def _evict_expired(queue: deque, now: int, max_age_ms: int, stamp: Callable[[Any], int]) -> None:
    while queue and now - stamp(queue[0]) > max_age_ms:
        queue.popleft()


def _sweep(table: dict, now: int, max_age_ms: int, stamp: Callable[[Any], int]) -> None:
    # Entries are appended in clock order, so a queue whose newest entry expired is all expired
    for key in [k for k, q in table.items() if not q or now - stamp(q[-1]) > max_age_ms]:
        del table[key]


@dataclass(frozen=True)
class PendingStart:
    session_key: str
    tool_name: str
    observed_at_ms: int
    summary: str = ""
    paths: list[str] = field(default_factory=list)
    url: str | None = None


def _start_stamp(start: PendingStart) -> int:
    return start.observed_at_ms


def _marker_stamp(marker: tuple[int, str]) -> int:
    return marker[0]


class StartCorrelator:
    """Bounded per-(session, tool) FIFO of pending start observations."""

    def __init__(
        self,
        cap: int = DEFAULT_QUEUE_CAP,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.cap = cap
        self.max_age_ms = max_age_ms
        self._clock = clock
        self._queues: dict[tuple[str, str], deque[PendingStart]] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._queues)

    def record_start(
        self,
        session_key: str | None,
        tool_name: str | None,
        summary: str = "",
        paths: list[str] | None = None,
        url: str | None = None,
    ) -> PendingStart | None:
        """Queue a start observation. Ignored without both a session key and a tool name."""
        if not session_key or not tool_name:
            return None
        now = self._tick()
        start = PendingStart(
            session_key=session_key,
            tool_name=tool_name,
            observed_at_ms=now,
            summary=summary,
            paths=list(paths or []),
            url=url,
        )
        key = (session_key, tool_name)
        queue = self._queues.get(key)
        if queue is None:
            queue = self._queues[key] = deque(maxlen=self.cap)
        else:
            _evict_expired(queue, now, self.max_age_ms, _start_stamp)
        queue.append(start)
        return start

    def consume_matching_start(
        self, session_key: str | None, tool_name: str | None, max_age_ms: int | None = None
    ) -> PendingStart | None:
        """Evict expired heads, then pop and return the oldest remaining start."""
        max_age_ms = self.max_age_ms if max_age_ms is None else max_age_ms
        now = self._tick()
        key = (session_key or "", tool_name or "")
        queue = self._queues.get(key)
        if queue is None:
            return None
        _evict_expired(queue, now, max_age_ms, _start_stamp)
        start = queue.popleft() if queue else None
        if not queue:
            del self._queues[key]
        return start

    def pending(self, session_key: str, tool_name: str) -> int:
        queue = self._queues.get((session_key, tool_name))
        return len(queue) if queue else 0

    def _tick(self) -> int:
        now = self._clock()
        if now - self._last_sweep > self.max_age_ms:
            _sweep(self._queues, now, self.max_age_ms, _start_stamp)
            self._last_sweep = now
        return now


class CompletionDeduplicator:
    """Suppress the second of two completion hooks reporting the same call.

    Each completion leaves a marker tagged with the hook that produced it.
    A completion from one hook that finds a live marker from the other hook
    consumes it and is reported as a duplicate. Same FIFO and eviction
    rules as :class:`StartCorrelator`.
    """

    def __init__(
        self,
        cap: int = DEFAULT_QUEUE_CAP,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.cap = cap
        self.max_age_ms = max_age_ms
        self._clock = clock
        self._markers: dict[tuple[str, str], deque[tuple[int, str]]] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._markers)

    def is_duplicate(self, session_key: str | None, tool_name: str, source: str) -> bool:
        """Record a completion from ``source``; True if it duplicates one from another hook."""
        now = self._clock()
        if now - self._last_sweep > self.max_age_ms:
            _sweep(self._markers, now, self.max_age_ms, _marker_stamp)
            self._last_sweep = now

        key = (session_key or "", tool_name)
        markers = self._markers.get(key)
        if markers is not None:
            _evict_expired(markers, now, self.max_age_ms, _marker_stamp)
            for i, (_, marker_source) in enumerate(markers):
                if marker_source != source:
                    del markers[i]
                    if not markers:
                        del self._markers[key]
                    return True
        else:
            markers = self._markers[key] = deque(maxlen=self.cap)
        markers.append((now, source))
        return False
