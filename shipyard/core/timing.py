"""
Wall-clock timing for shipyard runs.

Phases (resolve, build, publish) and build batches are timed into plain
dicts keyed by label. For a batch, the gap between the summed workspace
durations and the batch's wall time is what concurrent building saved.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional


@contextmanager
def timed(timings: dict[str, float], label: str) -> Iterator[None]:
    """Record the block's wall-clock seconds under label, even if it raises."""
    start = time.monotonic()
    try:
        yield
    finally:
        timings[label] = round(time.monotonic() - start, 3)


def batch_label(index: int) -> str:
    return f"batch {index + 1}"


def concurrency_savings(wall: float, durations: Iterable[float]) -> float:
    """Seconds saved by building a batch concurrently instead of in sequence."""
    return max(0.0, round(sum(durations) - wall, 3))


def format_duration(seconds: float) -> str:
    """0.5 -> "0.5s", 65.3 -> "1m 5.3s", 3661.0 -> "1h 1m 1.0s"."""
    minutes, secs = divmod(seconds, 60)
    if minutes < 1:
        return f"{seconds:.1f}s"
    hours, minutes = divmod(int(minutes), 60)
    if not hours:
        return f"{minutes}m {secs:.1f}s"
    return f"{hours}h {minutes}m {secs:.1f}s"


def timing_summary(timings: dict[str, float], total: Optional[float] = None) -> str:
    """One line, e.g. "resolve: 0.0s | build: 12.4s | publish: 0.3s | total: 12.7s".

    total defaults to the sum of the entries; pass the measured wall time
    when entries overlap or leave gaps.
    """
    if not timings:
        return "(no timing data)"

    parts = [f"{label}: {format_duration(seconds)}" for label, seconds in timings.items()]
    parts.append(f"total: {format_duration(sum(timings.values()) if total is None else total)}")
    return " | ".join(parts)
