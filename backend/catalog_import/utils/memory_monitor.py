"""Process memory guard for long-running import workers."""

import gc
import logging
import resource
import sys
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Leave headroom for the broker connection and the interpreter itself
DEFAULT_MEMORY_BASELINE = 500 * 1024 * 1024
DEFAULT_MEMORY_LIMIT = 800 * 1024 * 1024


def format_bytes(bytes_val: float) -> str:
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_val < 1024.0:
            return f"{bytes_val:.1f}{unit}"
        bytes_val /= 1024.0
    return f"{bytes_val:.1f}TB"


@dataclass(frozen=True)
class MemoryReading:
    """Peak RSS of the worker measured against the configured thresholds."""

    current: int
    limit: int
    baseline: int

    @property
    def exceeded(self) -> bool:
        return self.current >= self.limit

    @property
    def under_pressure(self) -> bool:
        return self.current > self.baseline

    @property
    def percent_used(self) -> float:
        return (self.current / self.limit * 100) if self.limit > 0 else 0.0

    def describe(self) -> str:
        return (
            f"{format_bytes(self.current)} / {format_bytes(self.limit)} "
            f"({self.percent_used:.1f}%) [baseline: {format_bytes(self.baseline)}]"
        )


def get_memory_usage() -> int:
    """Peak resident set size of this process, in bytes (0 if unavailable)."""
    try:
        peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    except (OSError, ValueError) as e:
        logger.warning(f"Could not get memory usage: {e}")
        return 0
    # ru_maxrss is reported in bytes on macOS and in KB on Linux
    return peak if sys.platform == "darwin" else peak * 1024


def read_memory(
    limit: int = DEFAULT_MEMORY_LIMIT, baseline: int = DEFAULT_MEMORY_BASELINE
) -> MemoryReading:
    return MemoryReading(current=get_memory_usage(), limit=limit, baseline=baseline)


def check_memory_exceeded(limit: int = DEFAULT_MEMORY_LIMIT) -> tuple[bool, int, int]:
    """Return ``(is_exceeded, current_bytes, limit_bytes)`` for the hard limit."""
    reading = read_memory(limit=limit, baseline=limit)
    if reading.exceeded:
        logger.error(f"Memory limit exceeded: {reading.describe()}")
    return reading.exceeded, reading.current, reading.limit


def force_gc() -> None:
    collected = gc.collect()
    logger.debug(f"Garbage collection freed {collected} objects")


def log_memory_status(
    context: str = "",
    baseline: int = DEFAULT_MEMORY_BASELINE,
    limit: int = DEFAULT_MEMORY_LIMIT,
) -> MemoryReading:
    """Log the current reading; above the baseline it is logged as a warning."""
    reading = read_memory(limit=limit, baseline=baseline)
    context_str = f" [{context}]" if context else ""
    if reading.under_pressure:
        logger.warning(f"Memory pressure{context_str}: {reading.describe()}")
    else:
        logger.info(f"Memory status{context_str}: {reading.describe()}")
    return reading
