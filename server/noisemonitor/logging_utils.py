from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once; later calls only adjust the level."""
    resolved = logging.getLevelName((level or "INFO").strip().upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    root = logging.getLogger()
    if not any(getattr(h, "_noisemonitor", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._noisemonitor = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(resolved)
    # websockets logs every handshake failure at INFO; keep it quieter than ours.
    logging.getLogger("websockets").setLevel(max(resolved, logging.WARNING))
