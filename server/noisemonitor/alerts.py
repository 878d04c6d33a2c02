from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from noisemonitor.config import MonitorConfig
from noisemonitor.emitter import EventEmitter
from noisemonitor.protocol import (
    ALERT,
    DEVICE_OFFLINE,
    NOISE_EXCEED,
    POSSIBLE_SENSOR_ISSUE,
)
from noisemonitor.registry import DeviceRegistry, DeviceState


class AlertEngine:
    """Threshold, peer-consistency and inactivity rules over the device registry.

    Rules carry no memory between invocations: every qualifying reading fires
    again and a silent device is reported offline on every sweep.
    """

    def __init__(
        self,
        config: MonitorConfig,
        registry: DeviceRegistry,
        emitter: EventEmitter,
        clock_ms: Callable[[], float],
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._emitter = emitter
        self._clock_ms = clock_ms
        self._logger = logger or logging.getLogger("noisemonitor.alerts")

    @property
    def threshold(self) -> float:
        return self._config.noise_threshold

    def evaluate(self, state: DeviceState, *, timestamp: float) -> list[dict[str, Any]]:
        """Run both per-message rules for the device that just reported."""
        alerts: list[dict[str, Any]] = []
        exceed = self.check_threshold(state, timestamp=timestamp)
        if exceed is not None:
            alerts.append(exceed)
        issue = self.check_peers(state)
        if issue is not None:
            alerts.append(issue)
        for alert in alerts:
            self._emitter.emit(ALERT, alert)
        return alerts

    def check_threshold(self, state: DeviceState, *, timestamp: float) -> dict[str, Any] | None:
        noise = state.last_noise_level
        if noise is None or not (noise >= self.threshold):
            return None
        return {
            "type": NOISE_EXCEED,
            "deviceId": state.device_id,
            "tableId": state.table_id,
            "noiseLevel": noise,
            "soundType": state.last_sound_type,
            "timestamp": timestamp,
        }

    def check_peers(self, state: DeviceState) -> dict[str, Any] | None:
        noise = state.last_noise_level
        if state.table_id is None or noise is None or not (noise >= self.threshold):
            return None
        peers = self._registry.peers_on_table(state.table_id, excluding_device_id=state.device_id)
        if not peers:
            return None
        quiet_below = self.threshold - self._config.peer_margin
        if any((p.last_noise_level or 0.0) >= quiet_below for p in peers):
            return None
        self._logger.info(
            "Possible sensor issue device=%s table=%s noise=%.1f peers=%d",
            state.device_id,
            state.table_id,
            noise,
            len(peers),
        )
        return {
            "type": POSSIBLE_SENSOR_ISSUE,
            "deviceId": state.device_id,
            "tableId": state.table_id,
            "noiseLevel": noise,
            "peers": [{"deviceId": p.device_id, "noise": p.last_noise_level or 0.0} for p in peers],
        }

    def sweep_inactive(self, now_ms: float | None = None) -> list[dict[str, Any]]:
        """Emit ``device-offline`` for every device silent longer than the inactivity window."""
        now = self._clock_ms() if now_ms is None else now_ms
        notices: list[dict[str, Any]] = []
        for device_id, state in self._registry.all_entries():
            if state.last_seen is None:
                continue
            if now - state.last_seen > self._config.inactivity_ms:
                notices.append({"deviceId": device_id, "tableId": state.table_id})
        for notice in notices:
            self._emitter.emit(DEVICE_OFFLINE, notice)
        if notices:
            self._logger.debug("Inactivity sweep: %d device(s) offline", len(notices))
        return notices
