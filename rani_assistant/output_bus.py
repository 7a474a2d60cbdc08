from __future__ import annotations

import logging
import threading
from typing import Callable, List

logger = logging.getLogger(__name__)

Subscriber = Callable[[str], None]


class OutputBus:
    """Broadcast channel for raw session output.

    Every subscriber receives every chunk, in publish order. Chunks are not
    line-aligned.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, chunk: str) -> None:
        if not chunk:
            return
        with self._lock:
            subscribers = list(self._subscribers)
        for cb in subscribers:
            try:
                cb(chunk)
            except Exception:
                # One broken observer must not starve the others.
                logger.exception("Output subscriber %r failed", cb)


class OutputBuffer:
    """Accumulates the terminal transcript of the current pass."""

    def __init__(self, bus: OutputBus) -> None:
        self._lock = threading.Lock()
        self._parts: List[str] = []
        self._unsubscribe = bus.subscribe(self._append)

    def _append(self, chunk: str) -> None:
        with self._lock:
            self._parts.append(chunk)

    def text(self) -> str:
        with self._lock:
            return "".join(self._parts)

    def clear(self) -> None:
        with self._lock:
            self._parts.clear()

    def close(self) -> None:
        self._unsubscribe()


class OutputLogSink:
    """Mirrors session output into the log, one record per complete line."""

    def __init__(self, bus: OutputBus, log: logging.Logger | None = None) -> None:
        self._log = log or logger
        self._pending = ""
        self._lock = threading.Lock()
        self._unsubscribe = bus.subscribe(self._feed)

    def _feed(self, chunk: str) -> None:
        with self._lock:
            self._pending += chunk
            *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self._log.debug("OUT %s", line.rstrip("\r"))

    def close(self) -> None:
        self._unsubscribe()
        with self._lock:
            rest, self._pending = self._pending, ""
        if rest:
            self._log.debug("OUT %s", rest)
