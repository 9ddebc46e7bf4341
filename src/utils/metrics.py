"""
Metrics Collection Module
Tracks message processing statistics for one checker instance
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict


@dataclass
class BatchMetrics:
    """
    Collects operational counters for batch retrievals.

    Failures are counted by stage ("identity", "header", "batch", ...) so a
    summary shows where messages are being lost, not only how many.
    """

    # Messages assembled successfully since startup
    messages_processed: int = 0

    # Messages skipped, keyed by failing stage
    failures: Counter = field(default_factory=Counter)

    # Batch calls completed, keyed by strategy name
    batches: Counter = field(default_factory=Counter)

    # Non-fatal decode issues reported through the sink
    decode_issues: int = 0

    # Bounded so long-running pollers do not grow without limit
    batch_time_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=500))

    start_time: datetime = field(default_factory=datetime.now)

    def record_message_processed(self):
        self.messages_processed += 1

    def record_failure(self, stage: str):
        self.failures[stage] += 1

    def record_batch(self, strategy: str, time_ms: float):
        """
        Record one completed batch retrieval.

        Args:
            strategy: Strategy name, e.g. "since_uid"
            time_ms: Wall-clock duration of the batch in milliseconds
        """
        self.batches[strategy] += 1
        self.batch_time_ms.append(time_ms)

    def get_summary(self) -> Dict:
        """
        Get a summary of all metrics.

        Returns:
            Dictionary suitable for logging or JSON export
        """
        stats = {}
        if self.batch_time_ms:
            sorted_times = sorted(self.batch_time_ms)
            n = len(sorted_times)
            stats = {
                "avg_ms": sum(sorted_times) / n,
                "min_ms": sorted_times[0],
                "max_ms": sorted_times[-1],
                "p50_ms": sorted_times[n // 2],
            }

        return {
            "uptime_seconds": (datetime.now() - self.start_time).total_seconds(),
            "messages_processed": self.messages_processed,
            "failures": dict(self.failures),
            "batches": dict(self.batches),
            "decode_issues": self.decode_issues,
            "batch_time_stats": stats,
        }

    def reset(self):
        """Reset all counters and restart the uptime clock."""
        self.messages_processed = 0
        self.failures.clear()
        self.batches.clear()
        self.decode_issues = 0
        self.batch_time_ms.clear()
        self.start_time = datetime.now()
