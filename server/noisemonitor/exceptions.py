"""Exception hierarchy for noisemonitor."""

from __future__ import annotations


class NoiseMonitorError(Exception):
    """Base exception for all noisemonitor errors."""


class ConfigError(NoiseMonitorError):
    """Invalid configuration value."""


class MalformedMessageError(NoiseMonitorError, ValueError):
    """Ingest payload could not be decoded or lacks a device id."""


class PortUnavailableError(NoiseMonitorError):
    """No listening port could be acquired within the attempt budget."""

    def __init__(self, message: str, *, first_port: int, attempts: int) -> None:
        self.first_port = first_port
        self.attempts = attempts
        super().__init__(message)
