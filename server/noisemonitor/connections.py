from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from websockets.exceptions import ConnectionClosed

from noisemonitor.alerts import AlertEngine
from noisemonitor.classifier import UNKNOWN, classify_features
from noisemonitor.emitter import EventEmitter
from noisemonitor.exceptions import MalformedMessageError
from noisemonitor.protocol import DEVICE_DATA, IngestMessage
from noisemonitor.registry import DeviceRegistry, DeviceState


@dataclass(slots=True)
class LiveConnection:
    conn: Any
    alive: bool = True
    probes_sent: int = 0


class ConnectionManager:
    """Serves device connections: decode, upsert, classify, alert, echo.

    Also owns the per-connection liveness flag: set on accept, on any frame
    and on a pong; cleared right before each probe. A connection still
    cleared at the next sweep is terminated.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        alerts: AlertEngine,
        emitter: EventEmitter,
        clock_ms: Callable[[], float],
        logger: logging.Logger | None = None,
    ) -> None:
        self._registry = registry
        self._alerts = alerts
        self._emitter = emitter
        self._clock_ms = clock_ms
        self._logger = logger or logging.getLogger("noisemonitor.connections")
        self._live: dict[Any, LiveConnection] = {}

    @property
    def connection_count(self) -> int:
        return len(self._live)

    def is_alive(self, conn: Any) -> bool:
        live = self._live.get(conn)
        return live is not None and live.alive

    def register(self, conn: Any) -> None:
        self._live[conn] = LiveConnection(conn=conn)

    def unregister(self, conn: Any) -> None:
        self._live.pop(conn, None)

    def mark_alive(self, conn: Any) -> None:
        live = self._live.get(conn)
        if live is not None:
            live.alive = True

    async def handle_device(self, conn: Any) -> None:
        self.register(conn)
        self._logger.info("Device connection from %s (total=%d)", conn.remote_address, len(self._live))
        try:
            async for frame in conn:
                self.mark_alive(conn)
                self.ingest_frame(frame, conn)
        except ConnectionClosed:
            pass
        except OSError as e:
            self._logger.warning("Device connection %s I/O error: %s", conn.remote_address, e)
        finally:
            self.unregister(conn)
            self._logger.info("Device connection %s closed (remaining=%d)", conn.remote_address, len(self._live))

    def ingest_frame(self, frame: str | bytes, conn: Any | None = None) -> DeviceState | None:
        """Decode and apply one frame. Malformed frames are logged and dropped."""
        try:
            msg = IngestMessage.decode(frame)
        except MalformedMessageError as e:
            self._logger.warning("Discarding message from %s: %s", getattr(conn, "remote_address", None), e)
            return None
        return self.ingest(msg, conn)

    def ingest(self, msg: IngestMessage, conn: Any | None = None) -> DeviceState:
        timestamp = msg.timestamp if msg.timestamp is not None else self._clock_ms()

        confidence: float | None = None
        if msg.audio_features is not None:
            noise = msg.noise_level
            if noise is None:
                prior = self._registry.get(msg.device_id)
                noise = prior.last_noise_level if prior is not None else None
            f = msg.audio_features
            result = classify_features(
                noise if noise is not None else 0.0,
                f.low_freq_energy,
                f.mid_freq_energy,
                f.high_freq_energy,
                f.volatility,
            )
            sound_type = result.sound_type
            confidence = result.confidence
        else:
            sound_type = msg.sound_type or UNKNOWN

        state = self._registry.upsert(
            msg.device_id,
            table_id=msg.table_id,
            last_seen=timestamp,
            last_noise_level=msg.noise_level,
            last_sound_type=sound_type,
            last_confidence=confidence,
            connection=conn,
        )

        self._emitter.emit(
            DEVICE_DATA,
            {
                "deviceId": state.device_id,
                "tableId": state.table_id,
                "noiseLevel": msg.noise_level,
                "soundType": sound_type,
                "timestamp": timestamp,
            },
        )
        # A reading without a level carries nothing new for the noise rules.
        if msg.noise_level is not None:
            self._alerts.evaluate(state, timestamp=timestamp)
        return state

    async def sweep_liveness(self) -> int:
        """Terminate unanswered connections and probe the rest. Returns terminations."""
        terminated = 0
        for conn, live in list(self._live.items()):
            if not live.alive:
                self._logger.info(
                    "Terminating unresponsive connection %s after %d probe(s)",
                    getattr(conn, "remote_address", None),
                    live.probes_sent,
                )
                self._terminate(conn)
                self.unregister(conn)
                terminated += 1
                continue
            live.alive = False
            await self._probe(conn, live)
        return terminated

    async def _probe(self, conn: Any, live: LiveConnection) -> None:
        try:
            pong_waiter = await conn.ping()
        except (ConnectionClosed, OSError):
            self.unregister(conn)
            return
        live.probes_sent += 1

        def _on_pong(fut: Any) -> None:
            if fut.cancelled() or fut.exception() is not None:
                return
            self.mark_alive(conn)

        pong_waiter.add_done_callback(_on_pong)

    def _terminate(self, conn: Any) -> None:
        transport = getattr(conn, "transport", None)
        if transport is not None:
            transport.abort()
