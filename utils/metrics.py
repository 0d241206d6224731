"""
Timing utilities for the voice terminal control path.

Device switches and block processing have to stay fast because they run on
the single event loop; the collector records how long they take and warns
when a stage exceeds its threshold.
"""
import time
import logging
from contextlib import contextmanager
from typing import Dict, List, Optional
from dataclasses import dataclass
from collections import defaultdict

logger = logging.getLogger(__name__)


@dataclass
class TimingStats:
    """Statistics for a timed operation."""
    stage: str
    count: int
    total_time: float
    avg_time: float
    min_time: float
    max_time: float
    last_time: float


class MetricsCollector:
    """Collects timing measurements per stage."""

    def __init__(self):
        self.timings: Dict[str, List[float]] = defaultdict(list)
        self.thresholds: Dict[str, float] = {
            "duplex_switch": 0.25,   # device close/open choreography
            "device_open": 0.2,
            "tx_block": 0.01,        # one capture block through the graph
            "rx_block": 0.01,        # one remote block into the receive fifo
        }
        self.warnings: List[str] = []

    def record_timing(self, stage: str, duration: float) -> None:
        """Record a timing measurement."""
        self.timings[stage].append(duration)

        threshold = self.thresholds.get(stage)
        if threshold and duration > threshold:
            warning = f"{stage} exceeded threshold: {duration:.3f}s > {threshold}s"
            self.warnings.append(warning)
            logger.warning(warning)

    def get_stats(self, stage: str) -> Optional[TimingStats]:
        """Get statistics for a specific stage."""
        times = self.timings.get(stage, [])
        if not times:
            return None

        return TimingStats(
            stage=stage,
            count=len(times),
            total_time=sum(times),
            avg_time=sum(times) / len(times),
            min_time=min(times),
            max_time=max(times),
            last_time=times[-1]
        )

    def log_summary(self) -> None:
        """Log a summary line per stage."""
        for stage in sorted(self.timings.keys()):
            stats = self.get_stats(stage)
            if stats:
                logger.info(
                    "%-14s count=%d avg=%.1fms min=%.1fms max=%.1fms",
                    stage, stats.count, stats.avg_time * 1000,
                    stats.min_time * 1000, stats.max_time * 1000
                )
        if self.warnings:
            logger.info("%d threshold violations", len(self.warnings))

    def clear(self) -> None:
        """Clear all collected metrics."""
        self.timings.clear()
        self.warnings.clear()


# Global metrics collector
_metrics = MetricsCollector()


@contextmanager
def timer(stage: str):
    """Context manager for timing operations."""
    start_time = time.perf_counter()
    try:
        yield
    finally:
        _metrics.record_timing(stage, time.perf_counter() - start_time)


def get_stats(stage: str) -> Optional[TimingStats]:
    """Get statistics for a specific stage."""
    return _metrics.get_stats(stage)


def log_latency() -> None:
    """Log latency summary."""
    _metrics.log_summary()


def clear_metrics() -> None:
    """Clear all metrics."""
    _metrics.clear()
