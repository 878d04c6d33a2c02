from __future__ import annotations

import asyncio
from typing import Any

import pytest

from noisemonitor.alerts import AlertEngine
from noisemonitor.config import MonitorConfig
from noisemonitor.connections import ConnectionManager
from noisemonitor.emitter import EventEmitter
from noisemonitor.registry import DeviceRegistry


class FakeClock:
    def __init__(self, now_ms: float = 1_000_000.0) -> None:
        self.now_ms = now_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, ms: float) -> None:
        self.now_ms += ms


class FakeTransport:
    def __init__(self) -> None:
        self.aborted = False

    def abort(self) -> None:
        self.aborted = True


class FakeConn:
    """Stands in for a websockets ServerConnection."""

    def __init__(self, frames: list[Any] | None = None, remote_address: tuple[str, int] = ("10.0.0.5", 50000)) -> None:
        self.frames = list(frames or [])
        self.remote_address = remote_address
        self.transport = FakeTransport()
        self.sent: list[str] = []
        self.pong_waiters: list[asyncio.Future[float]] = []
        self.ping_error: Exception | None = None

    async def ping(self) -> asyncio.Future[float]:
        if self.ping_error is not None:
            raise self.ping_error
        fut: asyncio.Future[float] = asyncio.get_running_loop().create_future()
        self.pong_waiters.append(fut)
        return fut

    def answer_pings(self) -> None:
        for fut in self.pong_waiters:
            if not fut.done():
                fut.set_result(0.001)

    async def send(self, text: str) -> None:
        self.sent.append(text)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for frame in self.frames:
            yield frame


class Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, kind: str, payload: dict[str, Any]) -> None:
        self.events.append((kind, payload))

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [p for k, p in self.events if k == kind]

    def alerts(self, alert_type: str) -> list[dict[str, Any]]:
        return [p for p in self.of_kind("alert") if p["type"] == alert_type]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> MonitorConfig:
    return MonitorConfig()


@pytest.fixture
def registry() -> DeviceRegistry:
    return DeviceRegistry()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def emitter(config: MonitorConfig, registry: DeviceRegistry, clock: FakeClock, recorder: Recorder) -> EventEmitter:
    em = EventEmitter(config, registry, clock)
    em.add_listener(recorder)
    return em


@pytest.fixture
def alerts(config: MonitorConfig, registry: DeviceRegistry, emitter: EventEmitter, clock: FakeClock) -> AlertEngine:
    return AlertEngine(config, registry, emitter, clock)


@pytest.fixture
def manager(registry: DeviceRegistry, alerts: AlertEngine, emitter: EventEmitter, clock: FakeClock) -> ConnectionManager:
    return ConnectionManager(registry, alerts, emitter, clock)
