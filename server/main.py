from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging

from noisemonitor.config import MonitorConfig
from noisemonitor.exceptions import NoiseMonitorError
from noisemonitor.server import NoiseMonitorServer


def build_parser(defaults: MonitorConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Table noise monitoring server")
    parser.add_argument("--host", default=defaults.host)
    parser.add_argument("--port", type=int, default=defaults.port)
    parser.add_argument("--port-attempts", type=int, default=defaults.port_attempts)
    parser.add_argument("--threshold", type=float, default=defaults.noise_threshold, help="Noise alert threshold")
    parser.add_argument("--inactivity-ms", type=int, default=defaults.inactivity_ms)
    parser.add_argument("--sweep-interval-ms", type=int, default=defaults.sweep_interval_ms)
    parser.add_argument("--log-level", default=defaults.log_level)
    return parser


def config_from_args(argv: list[str] | None = None) -> MonitorConfig:
    env_config = MonitorConfig.from_env()
    args = build_parser(env_config).parse_args(argv)
    return dataclasses.replace(
        env_config,
        host=args.host,
        port=args.port,
        port_attempts=args.port_attempts,
        noise_threshold=args.threshold,
        inactivity_ms=args.inactivity_ms,
        sweep_interval_ms=args.sweep_interval_ms,
        log_level=args.log_level,
    )


async def _amain() -> int:
    try:
        config = config_from_args()
        server = NoiseMonitorServer(config)
        await server.run()
    except NoiseMonitorError as e:
        logging.getLogger("noisemonitor").error("Fatal: %s", e)
        return 1
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
