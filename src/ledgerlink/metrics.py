from __future__ import annotations

import os
import threading
from typing import Dict, List

# Lifecycle counters (admin_*, user_*, deploy_*, watch_*, tx_*) and the
# `deployed` gauge. Names are bare; the exposition prefix is added on output.

_lock = threading.Lock()
_counters: Dict[str, int] = {}
_gauges: Dict[str, int] = {}


def metrics_enabled() -> bool:
    v = (os.environ.get("LEDGERLINK_METRICS_ENABLED") or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def inc_counter(name: str, value: int = 1) -> None:
    with _lock:
        _counters[name] = _counters.get(name, 0) + int(value)


def set_gauge(name: str, value: int) -> None:
    with _lock:
        _gauges[name] = int(value)


def format_prometheus(prefix: str = "ledgerlink_") -> str:
    """Prometheus exposition text for every counter and gauge seen so far."""
    with _lock:
        counters = sorted(_counters.items())
        gauges = sorted(_gauges.items())

    lines: List[str] = []
    for k, v in counters:
        lines.append(f"# TYPE {prefix}{k} counter")
        lines.append(f"{prefix}{k} {v}")
    for k, v in gauges:
        lines.append(f"# TYPE {prefix}{k} gauge")
        lines.append(f"{prefix}{k} {v}")
    return "\n".join(lines) + "\n"
