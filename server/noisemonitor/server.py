from __future__ import annotations

import asyncio
import errno
import logging
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlparse

import websockets
from websockets.asyncio.server import Server, ServerConnection
from websockets.exceptions import ConnectionClosed

from noisemonitor.alerts import AlertEngine
from noisemonitor.config import MonitorConfig
from noisemonitor.connections import ConnectionManager
from noisemonitor.emitter import EventEmitter
from noisemonitor.exceptions import NoiseMonitorError, PortUnavailableError
from noisemonitor.logging_utils import setup_logging
from noisemonitor.protocol import QUERY_DEVICES, SERVER_INFO, loads
from noisemonitor.registry import DeviceRegistry

EVENTS_PATH = "/events"
MAX_PORT = 65535


def wall_clock_ms() -> float:
    return time.time() * 1000.0


class NoiseMonitorServer:
    def __init__(
        self,
        config: MonitorConfig | None = None,
        *,
        clock_ms: Callable[[], float] = wall_clock_ms,
    ) -> None:
        self.config = config or MonitorConfig()
        setup_logging(self.config.log_level)
        self._logger = logging.getLogger("noisemonitor")

        self.registry = DeviceRegistry()
        self.emitter = EventEmitter(
            self.config, self.registry, clock_ms, logger=logging.getLogger("noisemonitor.emitter")
        )
        self.alerts = AlertEngine(
            self.config, self.registry, self.emitter, clock_ms, logger=logging.getLogger("noisemonitor.alerts")
        )
        self.connections = ConnectionManager(
            self.registry, self.alerts, self.emitter, clock_ms, logger=logging.getLogger("noisemonitor.connections")
        )

        self.port: int | None = None
        self._server: Server | None = None
        self._stop = asyncio.Event()
        self._ready = asyncio.Event()

    async def wait_ready(self) -> int:
        await self._ready.wait()
        if self.port is None:
            raise NoiseMonitorError("server is not listening")
        return self.port

    def stop(self) -> None:
        self._stop.set()

    async def run(self) -> None:
        self._server = await self._listen()
        self._logger.info(
            "Listening on ws://%s:%s (threshold=%.1f inactivity=%dms sweep=%dms)",
            self.config.host,
            self.port,
            self.config.noise_threshold,
            self.config.inactivity_ms,
            self.config.sweep_interval_ms,
        )
        inactivity_task = asyncio.create_task(self._inactivity_loop(), name="inactivity_loop")
        liveness_task = asyncio.create_task(self._liveness_loop(), name="liveness_loop")
        self._ready.set()
        try:
            await self._stop.wait()
        finally:
            inactivity_task.cancel()
            liveness_task.cancel()
            await asyncio.gather(inactivity_task, liveness_task, return_exceptions=True)
            self._server.close()
            await self._server.wait_closed()
            self._logger.info("Server stopped")

    async def _listen(self) -> Server:
        first = self.config.port
        attempts = self.config.port_attempts
        last = min(first + attempts - 1, MAX_PORT) if first else 0
        for port in range(first, last + 1):
            try:
                server = await websockets.serve(
                    self._route,
                    self.config.host,
                    port,
                    # Liveness for devices and display subscribers is driven by our own sweep.
                    ping_interval=None,
                    max_size=1024 * 1024,
                )
            except OSError as e:
                if e.errno != errno.EADDRINUSE:
                    raise
                self._logger.warning("Port %d in use", port)
                continue
            self.port = int(server.sockets[0].getsockname()[1]) if server.sockets else port
            return server
        raise PortUnavailableError(
            f"No free port in {first}..{last}",
            first_port=first,
            attempts=attempts,
        )

    async def _route(self, conn: ServerConnection) -> None:
        path = urlparse(conn.request.path).path if conn.request is not None else "/"
        if path == EVENTS_PATH:
            await self._handle_events(conn)
            return
        await self.connections.handle_device(conn)

    async def _handle_events(self, conn: ServerConnection) -> None:
        self.emitter.attach(conn)
        self.connections.register(conn)
        self._logger.info("Display subscriber connected from %s", conn.remote_address)
        self.emitter.send_to(conn, SERVER_INFO, {"port": self.port, "threshold": self.config.noise_threshold})
        try:
            async for msg in conn:
                self.connections.mark_alive(conn)
                try:
                    obj: Any = loads(msg)
                except ValueError:
                    continue
                if isinstance(obj, dict) and obj.get("type") == QUERY_DEVICES:
                    self.emitter.answer_query(conn)
        except ConnectionClosed:
            pass
        finally:
            self.connections.unregister(conn)
            await self.emitter.detach(conn)
            self._logger.info("Display subscriber %s disconnected", conn.remote_address)

    async def _inactivity_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval_s)
            self.alerts.sweep_inactive()

    async def _liveness_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval_s)
            await self.connections.sweep_liveness()
