"""
Memory reclamation hook for batched training.

Builders and similarity computations call ``MemoryMonitor.reclaim()``
after every batch. Every ``cleanup_interval`` calls a full garbage
collection runs; current and peak resident memory are tracked for the
memory stats endpoint.
"""

import gc
import os
from typing import Any, Dict, Optional

import psutil

from core.logging import get_logger


logger = get_logger(__name__)


class MemoryMonitor:
    """Counts reclamation calls and runs gc.collect() periodically."""

    def __init__(
        self,
        cleanup_interval: int = 50,
        log_every: int = 100,
        process: Optional[psutil.Process] = None,
    ):
        self.cleanup_interval = max(1, cleanup_interval)
        self.log_every = max(1, log_every)
        self.process = process or psutil.Process(os.getpid())
        self.operations_count = 0
        self.collections = 0
        self.rss = 0
        self.peak_rss = 0

    def sample(self) -> int:
        """Read current resident memory and update the peak."""
        self.rss = self.process.memory_info().rss
        self.peak_rss = max(self.peak_rss, self.rss)
        return self.rss

    def reclaim(self) -> None:
        """Reclamation hook: call after each batch."""
        self.operations_count += 1
        if self.operations_count % self.cleanup_interval == 0:
            gc.collect()
            self.collections += 1
            self.sample()

        if self.operations_count % self.log_every == 0:
            self.sample()
            logger.debug(
                "Memory checkpoint",
                operations=self.operations_count,
                rss_mb=round(self.rss / 1024 / 1024, 1),
                peak_rss_mb=round(self.peak_rss / 1024 / 1024, 1),
            )

    def force(self) -> None:
        """Unconditional collection, used after clearing model state."""
        gc.collect()
        self.collections += 1
        self.sample()

    def stats(self) -> Dict[str, Any]:
        self.sample()
        return {
            "operations_count": self.operations_count,
            "collections": self.collections,
            "rss_bytes": self.rss,
            "peak_rss_bytes": self.peak_rss,
            "gc_counts": list(gc.get_count()),
        }
