from __future__ import annotations

import threading
import weakref
from dataclasses import dataclass, replace
from typing import Any


@dataclass(slots=True)
class DeviceState:
    device_id: str
    table_id: str | None = None
    last_seen: float | None = None
    last_noise_level: float | None = None
    last_sound_type: str | None = None
    last_confidence: float | None = None
    # Non-owning; the connection's lifecycle belongs to the connection manager.
    connection_ref: weakref.ReferenceType[Any] | None = None

    @property
    def connection(self) -> Any | None:
        ref = self.connection_ref
        return ref() if ref is not None else None

    def to_view(self, *, now_ms: float, inactivity_ms: float) -> dict[str, Any]:
        online = self.last_seen is not None and (now_ms - self.last_seen) <= inactivity_ms
        return {
            "deviceId": self.device_id,
            "tableId": self.table_id,
            "lastSeen": self.last_seen,
            "lastNoiseLevel": self.last_noise_level,
            "lastSoundType": self.last_sound_type,
            "lastConfidence": self.last_confidence,
            "online": online,
        }


class DeviceRegistry:
    """Keyed store of per-device state shared by all connection tasks.

    Every read hands out copies so callers can iterate or compare peers
    without holding the lock. Entries are never removed.
    """

    def __init__(self) -> None:
        # Only the event loop writes today; the lock keeps this safe if a thread ever does.
        self._lock = threading.Lock()
        self._devices: dict[str, DeviceState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def __contains__(self, device_id: object) -> bool:
        with self._lock:
            return device_id in self._devices

    def upsert(
        self,
        device_id: str,
        *,
        table_id: str | None = None,
        last_seen: float | None = None,
        last_noise_level: float | None = None,
        last_sound_type: str | None = None,
        last_confidence: float | None = None,
        connection: Any | None = None,
    ) -> DeviceState:
        """Create or update ``device_id``; ``None`` arguments keep the prior value."""
        with self._lock:
            state = self._devices.get(device_id)
            if state is None:
                state = DeviceState(device_id=device_id)
                self._devices[device_id] = state
            if table_id is not None:
                state.table_id = table_id
            if last_seen is not None:
                state.last_seen = float(last_seen)
            if last_noise_level is not None:
                state.last_noise_level = float(last_noise_level)
            if last_sound_type is not None:
                state.last_sound_type = last_sound_type
            if last_confidence is not None:
                state.last_confidence = float(last_confidence)
            if connection is not None:
                state.connection_ref = weakref.ref(connection)
            return replace(state)

    def get(self, device_id: str) -> DeviceState | None:
        with self._lock:
            state = self._devices.get(device_id)
            return replace(state) if state is not None else None

    def all_entries(self) -> list[tuple[str, DeviceState]]:
        with self._lock:
            return [(device_id, replace(state)) for device_id, state in self._devices.items()]

    def peers_on_table(self, table_id: str, excluding_device_id: str | None = None) -> list[DeviceState]:
        with self._lock:
            return [
                replace(state)
                for device_id, state in self._devices.items()
                if state.table_id == table_id and device_id != excluding_device_id
            ]

    def snapshot(self, *, now_ms: float, inactivity_ms: float) -> dict[str, dict[str, Any]]:
        return {
            device_id: state.to_view(now_ms=now_ms, inactivity_ms=inactivity_ms)
            for device_id, state in self.all_entries()
        }
