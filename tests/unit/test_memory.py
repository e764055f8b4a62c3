"""
Tests for the memory reclamation hook.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock


def _process(*rss_values):
    process = MagicMock()
    process.memory_info.side_effect = [SimpleNamespace(rss=v) for v in rss_values]
    return process


class TestMemoryMonitor:
    """Tests for MemoryMonitor."""

    def test_stats_report_current_and_peak_rss(self):
        from core.memory import MemoryMonitor

        stats = MemoryMonitor().stats()

        assert set(stats) == {"operations_count", "collections", "rss_bytes", "peak_rss_bytes", "gc_counts"}
        assert stats["rss_bytes"] > 0
        assert stats["peak_rss_bytes"] >= stats["rss_bytes"]

    def test_peak_survives_a_drop(self):
        """Test the peak keeps the highest sample after memory is released."""
        from core.memory import MemoryMonitor

        monitor = MemoryMonitor(process=_process(300, 100))

        monitor.force()
        stats = monitor.stats()

        assert stats["rss_bytes"] == 100
        assert stats["peak_rss_bytes"] == 300
        assert stats["collections"] == 1

    def test_collects_every_interval(self):
        from core.memory import MemoryMonitor

        monitor = MemoryMonitor(cleanup_interval=3, process=_process(10, 20, 30))

        for _ in range(7):
            monitor.reclaim()

        assert monitor.operations_count == 7
        assert monitor.collections == 2
        assert monitor.peak_rss == 20
