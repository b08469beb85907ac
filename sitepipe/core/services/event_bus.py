"""
EventBus — thread-safe, in-process pub/sub for reload notifications.

The pipeline publishes ``build:reload`` after every completed stage run
in development mode; the dev server's SSE endpoint subscribes and the
injected browser client reloads the page.

Thread safety model
───────────────────
- ``_lock`` guards the sequence counter, the replay buffer, the
  subscriber list and the per-stage latest map.
- Every subscriber owns a bounded ``queue.Queue``. Publishing fans out
  with ``put_nowait`` under the lock; a subscriber whose queue is full
  is disconnected rather than blocking the build.

Message format::

    {
        "v": 1,                     # schema version
        "ts": 1739648400.123,       # server timestamp
        "seq": 47,                  # monotonic sequence
        "type": "build:reload",     # <domain>:<action>
        "key": "styles",            # stage name
        "data": { ... },            # event-specific payload
    }
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from typing import Any, Generator

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1
HEARTBEAT = "sys:heartbeat"
RELOAD = "build:reload"

Event = dict[str, Any]


class EventBus:
    """Thread-safe, in-process pub/sub with a bounded replay buffer.

    Parameters
    ----------
    buffer_size : int
        Events kept for clients that reconnect with ``since``.
    subscriber_queue_size : int
        Backlog allowed per subscriber before it is dropped.
    """

    def __init__(
        self,
        *,
        buffer_size: int = 100,
        subscriber_queue_size: int = 100,
    ) -> None:
        self._lock = threading.Lock()
        self._seq = 0
        self._history: deque[Event] = deque(maxlen=buffer_size)
        self._queues: list[queue.Queue[Event]] = []
        self._queue_size = subscriber_queue_size
        self._latest: dict[str, Event] = {}

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._queues)

    # ── Publishing ──────────────────────────────────────────────

    def publish(
        self,
        event_type: str,
        *,
        key: str = "",
        data: dict[str, Any] | None = None,
    ) -> Event:
        """Broadcast an event to every subscriber and return it."""
        with self._lock:
            event = self._next_event(event_type, key, data or {})
            if event_type != HEARTBEAT:
                self._history.append(event)
            if event_type == RELOAD and key:
                self._latest[key] = event
            self._broadcast(event)

        if event_type != HEARTBEAT:
            logger.debug("event %s key=%s seq=%d", event_type, key or "-", event["seq"])
        return event

    # ── Subscribing ─────────────────────────────────────────────

    def subscribe(
        self,
        *,
        since: int = 0,
        heartbeat_interval: float = 15.0,
    ) -> Generator[Event, None, None]:
        """Yield events for one client, blocking between events.

        The first event is always ``sys:ready``. Buffered events newer
        than ``since`` follow, so a browser that reconnects mid-rebuild
        still sees the reload it missed.
        """
        inbox: queue.Queue[Event] = queue.Queue(maxsize=self._queue_size)

        with self._lock:
            backlog = [e for e in self._history if e["seq"] > since] if since > 0 else []
            for event in backlog[-self._queue_size:]:
                inbox.put_nowait(event)
            self._queues.append(inbox)
            ready = self._next_event("sys:ready", "", {"stages": sorted(self._latest)})

        logger.debug("Subscriber connected (since=%d)", since)
        try:
            yield ready
            while True:
                try:
                    yield inbox.get(timeout=heartbeat_interval)
                except queue.Empty:
                    yield self.publish(HEARTBEAT)
        finally:
            with self._lock:
                if inbox in self._queues:
                    self._queues.remove(inbox)
            logger.debug("Subscriber disconnected")

    def latest(self) -> dict[str, Event]:
        """Last ``build:reload`` event per stage."""
        with self._lock:
            return dict(self._latest)

    # ── Internal helpers (caller holds the lock) ────────────────

    def _next_event(self, event_type: str, key: str, data: dict[str, Any]) -> Event:
        self._seq += 1
        return {
            "v": _SCHEMA_VERSION,
            "ts": time.time(),
            "seq": self._seq,
            "type": event_type,
            "key": key,
            "data": data,
        }

    def _broadcast(self, event: Event) -> None:
        stale = []
        for inbox in self._queues:
            try:
                inbox.put_nowait(event)
            except queue.Full:
                stale.append(inbox)
        for inbox in stale:
            self._queues.remove(inbox)
            logger.info("Dropped unresponsive subscriber (queue full)")
