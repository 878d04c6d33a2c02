from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from noisemonitor.exceptions import ConfigError


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return float(default)
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return int(default)
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class MonitorConfig:
    """Server settings, built once at startup and shared by every component."""

    host: str = "0.0.0.0"
    port: int = 8080
    port_attempts: int = 50
    noise_threshold: float = 65.0
    # Peers are "quiet" below threshold - peer_margin.
    peer_margin: float = 10.0
    inactivity_ms: int = 15_000
    sweep_interval_ms: int = 5_000
    subscriber_queue: int = 100
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"port out of range: {self.port}")
        if self.port_attempts < 1:
            raise ConfigError("port_attempts must be at least 1")
        if self.inactivity_ms <= 0:
            raise ConfigError("inactivity_ms must be positive")
        if self.sweep_interval_ms <= 0:
            raise ConfigError("sweep_interval_ms must be positive")
        if self.subscriber_queue < 1:
            raise ConfigError("subscriber_queue must be at least 1")
        if self.peer_margin < 0:
            raise ConfigError("peer_margin must not be negative")

    @property
    def sweep_interval_s(self) -> float:
        return self.sweep_interval_ms / 1000.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> MonitorConfig:
        env = os.environ if environ is None else environ
        return cls(
            host=(env.get("HOST") or "0.0.0.0").strip(),
            port=_env_int(env, "PORT", 8080),
            port_attempts=_env_int(env, "PORT_ATTEMPTS", 50),
            noise_threshold=_env_float(env, "NOISE_THRESHOLD", 65.0),
            peer_margin=_env_float(env, "PEER_MARGIN", 10.0),
            inactivity_ms=_env_int(env, "INACTIVITY_MS", 15_000),
            sweep_interval_ms=_env_int(env, "SWEEP_INTERVAL_MS", 5_000),
            subscriber_queue=_env_int(env, "SUBSCRIBER_QUEUE", 100),
            log_level=(env.get("LOG_LEVEL") or "INFO").strip(),
        )
