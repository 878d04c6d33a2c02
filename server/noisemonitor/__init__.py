"""Live ambient-noise monitoring server for table-grouped telemetry devices."""

from noisemonitor.classifier import Classification, classify, classify_features
from noisemonitor.config import MonitorConfig
from noisemonitor.registry import DeviceRegistry, DeviceState
from noisemonitor.server import NoiseMonitorServer

__all__ = [
    "Classification",
    "DeviceRegistry",
    "DeviceState",
    "MonitorConfig",
    "NoiseMonitorServer",
    "classify",
    "classify_features",
]
