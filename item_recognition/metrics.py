"""
Per-call processing statistics and where they go.

ProcessingStats is attached to every RecognitionResult. The engine also
hands each one to a MetricsSink; the default sink keeps a bounded
history for get_performance_metrics(). Memory is sampled as process RSS
through psutil, so memory_bytes is the RSS delta over the call and can
be negative when the allocator returns pages.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, asdict
from typing import List

import psutil

logger = logging.getLogger(__name__)


@dataclass
class ProcessingStats:
    total_pixels: int = 0
    regions_detected: int = 0
    regions_analyzed: int = 0
    matches_found: int = 0
    processing_time_ms: float = 0.0
    memory_bytes: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class MetricsSink:
    """Receives stats for every recognition call."""

    def record(self, stats: ProcessingStats):
        raise NotImplementedError

    def memory_usage(self) -> int:
        """Current memory footprint in bytes (0 when unknown)."""
        return 0

    def history(self) -> List[ProcessingStats]:
        return []


class InMemoryMetricsSink(MetricsSink):
    """Keeps the last max_history stats; memory from psutil RSS."""

    def __init__(self, max_history: int = 1000):
        self._history = deque(maxlen=max_history)
        self._lock = threading.Lock()
        self._process = psutil.Process()

    def record(self, stats: ProcessingStats):
        with self._lock:
            self._history.append(stats)

    def memory_usage(self) -> int:
        try:
            return int(self._process.memory_info().rss)
        except psutil.Error as e:
            logger.warning(f"Memory sampling failed: {e}")
            return 0

    def history(self) -> List[ProcessingStats]:
        with self._lock:
            return list(self._history)
