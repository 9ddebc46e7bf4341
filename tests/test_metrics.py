"""
Tests for metrics collection functionality
"""

import unittest
from datetime import datetime

from src.utils.metrics import BatchMetrics


class TestBatchMetrics(unittest.TestCase):
    """Test cases for BatchMetrics class"""

    def setUp(self):
        """Set up test fixtures"""
        self.metrics = BatchMetrics()

    def test_initialization(self):
        """Test that metrics are initialized correctly"""
        self.assertEqual(self.metrics.messages_processed, 0)
        self.assertEqual(len(self.metrics.failures), 0)
        self.assertEqual(len(self.metrics.batch_time_ms), 0)
        self.assertEqual(self.metrics.decode_issues, 0)
        self.assertIsInstance(self.metrics.start_time, datetime)

    def test_record_message_processed(self):
        self.metrics.record_message_processed()
        self.metrics.record_message_processed()
        self.assertEqual(self.metrics.messages_processed, 2)

    def test_record_failure_by_stage(self):
        self.metrics.record_failure("message")
        self.metrics.record_failure("message")
        self.metrics.record_failure("batch")
        self.assertEqual(self.metrics.failures["message"], 2)
        self.assertEqual(self.metrics.failures["batch"], 1)

    def test_record_batch(self):
        self.metrics.record_batch("since_uid", 100.0)
        self.metrics.record_batch("since_uid", 300.0)
        self.metrics.record_batch("all", 200.0)
        self.assertEqual(self.metrics.batches["since_uid"], 2)
        self.assertEqual(list(self.metrics.batch_time_ms), [100.0, 300.0, 200.0])

    def test_batch_times_bounded(self):
        """Long-running pollers keep only the most recent timings"""
        for i in range(600):
            self.metrics.record_batch("unseen", float(i))
        self.assertEqual(len(self.metrics.batch_time_ms), 500)
        self.assertEqual(self.metrics.batch_time_ms[0], 100.0)

    def test_get_summary(self):
        self.metrics.record_message_processed()
        self.metrics.record_failure("message")
        self.metrics.record_batch("all", 100.0)
        self.metrics.record_batch("all", 300.0)
        self.metrics.decode_issues = 4

        summary = self.metrics.get_summary()

        self.assertEqual(summary["messages_processed"], 1)
        self.assertEqual(summary["failures"], {"message": 1})
        self.assertEqual(summary["batches"], {"all": 2})
        self.assertEqual(summary["decode_issues"], 4)
        self.assertEqual(summary["batch_time_stats"]["avg_ms"], 200.0)
        self.assertEqual(summary["batch_time_stats"]["min_ms"], 100.0)
        self.assertEqual(summary["batch_time_stats"]["max_ms"], 300.0)
        self.assertGreaterEqual(summary["uptime_seconds"], 0)

    def test_summary_without_batches(self):
        self.assertEqual(self.metrics.get_summary()["batch_time_stats"], {})

    def test_reset(self):
        self.metrics.record_message_processed()
        self.metrics.record_failure("message")
        self.metrics.record_batch("all", 1.0)
        self.metrics.decode_issues = 3

        self.metrics.reset()

        self.assertEqual(self.metrics.messages_processed, 0)
        self.assertEqual(len(self.metrics.failures), 0)
        self.assertEqual(len(self.metrics.batches), 0)
        self.assertEqual(len(self.metrics.batch_time_ms), 0)
        self.assertEqual(self.metrics.decode_issues, 0)


if __name__ == '__main__':
    unittest.main()
