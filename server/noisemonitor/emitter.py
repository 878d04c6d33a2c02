from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from websockets.exceptions import ConnectionClosed

from noisemonitor.config import MonitorConfig
from noisemonitor.protocol import DEVICES, dumps
from noisemonitor.registry import DeviceRegistry

Listener = Callable[[str, dict[str, Any]], None]


def envelope(kind: str, payload: dict[str, Any]) -> str:
    return dumps({"event": kind, "data": payload})


@dataclass(slots=True)
class _Subscriber:
    conn: Any
    queue: asyncio.Queue[str]
    task: asyncio.Task[None] | None = None
    dropped: int = 0


class EventEmitter:
    """Best-effort push of events to display subscribers and in-process listeners.

    ``emit`` never awaits: websocket subscribers get a bounded queue drained by
    their own writer task, and the oldest entry is dropped when it is full.
    """

    def __init__(
        self,
        config: MonitorConfig,
        registry: DeviceRegistry,
        clock_ms: Callable[[], float],
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._clock_ms = clock_ms
        self._logger = logger or logging.getLogger("noisemonitor.emitter")
        self._listeners: list[Listener] = []
        self._subscribers: dict[Any, _Subscriber] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def emit(self, kind: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, payload)
            except Exception:
                self._logger.exception("Event listener failed kind=%s", kind)
        if not self._subscribers:
            return
        text = envelope(kind, payload)
        for sub in list(self._subscribers.values()):
            self._enqueue(sub, text)

    def _enqueue(self, sub: _Subscriber, text: str) -> None:
        if sub.queue.full():
            try:
                _ = sub.queue.get_nowait()
                sub.dropped += 1
            except asyncio.QueueEmpty:
                pass
        try:
            sub.queue.put_nowait(text)
        except asyncio.QueueFull:
            sub.dropped += 1

    def query(self) -> dict[str, Any]:
        """Full registry view plus the threshold, for consumers resynchronizing."""
        return {
            "devices": self._registry.snapshot(
                now_ms=self._clock_ms(),
                inactivity_ms=self._config.inactivity_ms,
            ),
            "threshold": self._config.noise_threshold,
        }

    def attach(self, conn: Any) -> None:
        sub = _Subscriber(conn=conn, queue=asyncio.Queue(maxsize=self._config.subscriber_queue))
        sub.task = asyncio.create_task(self._pump(sub), name="events_subscriber_pump")
        self._subscribers[conn] = sub

    async def detach(self, conn: Any) -> None:
        sub = self._subscribers.pop(conn, None)
        if sub is None or sub.task is None:
            return
        sub.task.cancel()
        await asyncio.gather(sub.task, return_exceptions=True)
        if sub.dropped:
            self._logger.info("Subscriber %s dropped %d events", getattr(conn, "remote_address", None), sub.dropped)

    def send_to(self, conn: Any, kind: str, payload: dict[str, Any]) -> None:
        """Queue an event for a single subscriber (replies to its own requests)."""
        sub = self._subscribers.get(conn)
        if sub is not None:
            self._enqueue(sub, envelope(kind, payload))

    def answer_query(self, conn: Any) -> None:
        self.send_to(conn, DEVICES, self.query())

    async def _pump(self, sub: _Subscriber) -> None:
        while True:
            text = await sub.queue.get()
            try:
                await sub.conn.send(text)
            except (ConnectionClosed, OSError):
                self._subscribers.pop(sub.conn, None)
                return
