from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

from noisemonitor.exceptions import MalformedMessageError

# Event kinds pushed to the display boundary.
DEVICE_DATA = "device-data"
ALERT = "alert"
DEVICE_OFFLINE = "device-offline"
SERVER_INFO = "server-info"
DEVICES = "devices"

# Alert types.
NOISE_EXCEED = "noise_exceed"
POSSIBLE_SENSOR_ISSUE = "possible_sensor_issue"

# Subscriber -> server requests.
QUERY_DEVICES = "query-devices"


def dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def loads(text: str | bytes) -> Any:
    return json.loads(text)


def _opt_number(obj: dict[str, Any], key: str) -> float | None:
    raw = obj.get(key)
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise MalformedMessageError(f"{key} must be a number, got {type(raw).__name__}")
    try:
        value = float(raw)
    except OverflowError:
        raise MalformedMessageError(f"{key} is out of range") from None
    if not math.isfinite(value):
        raise MalformedMessageError(f"{key} must be finite, got {raw!r}")
    return value


def _opt_str(obj: dict[str, Any], key: str) -> str | None:
    raw = obj.get(key)
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        raise MalformedMessageError(f"{key} must be a string, got {type(raw).__name__}")
    return raw


@dataclass(frozen=True, slots=True)
class AudioFeatures:
    """Producer-computed spectral summary; any field may be absent."""

    low_freq_energy: float | None = None
    mid_freq_energy: float | None = None
    high_freq_energy: float | None = None
    volatility: float | None = None

    @classmethod
    def from_obj(cls, obj: Any) -> AudioFeatures:
        if not isinstance(obj, dict):
            raise MalformedMessageError("audioFeatures must be an object")
        return cls(
            low_freq_energy=_opt_number(obj, "lowFreqEnergy"),
            mid_freq_energy=_opt_number(obj, "midFreqEnergy"),
            high_freq_energy=_opt_number(obj, "highFreqEnergy"),
            volatility=_opt_number(obj, "volatility"),
        )


@dataclass(frozen=True, slots=True)
class IngestMessage:
    """One validated device payload. Only ``device_id`` is guaranteed."""

    device_id: str
    table_id: str | None = None
    noise_level: float | None = None
    audio_features: AudioFeatures | None = None
    sound_type: str | None = None
    timestamp: float | None = None

    @classmethod
    def from_obj(cls, obj: Any) -> IngestMessage:
        if not isinstance(obj, dict):
            raise MalformedMessageError("payload must be a JSON object")
        device_id = obj.get("deviceId")
        if not isinstance(device_id, str) or not device_id:
            raise MalformedMessageError("missing deviceId")
        features = obj.get("audioFeatures")
        return cls(
            device_id=device_id,
            table_id=_opt_str(obj, "tableId"),
            noise_level=_opt_number(obj, "noiseLevel"),
            audio_features=AudioFeatures.from_obj(features) if features is not None else None,
            sound_type=_opt_str(obj, "soundType"),
            timestamp=_opt_number(obj, "timestamp"),
        )

    @classmethod
    def decode(cls, frame: str | bytes) -> IngestMessage:
        try:
            obj = loads(frame)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedMessageError(f"invalid JSON: {e}") from e
        return cls.from_obj(obj)
