"""
Engine counters and timings, kept in memory.

Counter names are dotted by component (``engine.passes``, ``reconcile.restored``,
``annotation.category.travelBookings``). The CLI prints them with ``--stats`` and
tests assert on them; nothing is exported off the process.
"""

from __future__ import annotations

import contextlib
import time
from collections import Counter, defaultdict
from collections.abc import Iterator

from sbox.observability.logging import get_logger

logger = get_logger("sbox.telemetry")

_COUNTERS: Counter[str] = Counter()
_TIMINGS: defaultdict[str, list[float]] = defaultdict(list)


def counter(name: str, increment: int = 1) -> int:
    """
    Bump ``name`` by ``increment`` and return the new value.

    Side Effects:
        - Updates the process-wide counter table
    """
    _COUNTERS[name] += increment
    logger.debug("counter=%s value=%s", name, _COUNTERS[name])
    return _COUNTERS[name]


def get_counter(name: str) -> int:
    return _COUNTERS[name]


def get_counters(prefix: str = "") -> dict[str, int]:
    return {name: value for name, value in _COUNTERS.items() if name.startswith(prefix)}


def reset_counters() -> None:
    _COUNTERS.clear()


@contextlib.contextmanager
def time_block(name: str) -> Iterator[None]:
    """
    Record the wall time of the enclosed block under ``name``, even when it raises.

    Side Effects:
        - Appends one sample (seconds) to the timing table
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        _TIMINGS[name].append(time.perf_counter() - start)


def get_latency_stats(name: str) -> dict[str, float]:
    """Count, min, max, mean and p95 (seconds) of the samples recorded for ``name``."""
    samples = sorted(_TIMINGS.get(name, ()))
    if not samples:
        return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p95": 0.0}

    count = len(samples)
    return {
        "count": count,
        "min": samples[0],
        "max": samples[-1],
        "avg": sum(samples) / count,
        "p95": samples[min(int(count * 0.95), count - 1)],
    }


def reset_latencies() -> None:
    _TIMINGS.clear()
