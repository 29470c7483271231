"""
CartEVM — Benchmark Metrics
===========================

Running gas and time totals for one report section.

Throughput is always derived from the accumulated sums
(``gas * 1e9 / nanos``), never from an average of per-run ratios, so a slow
run weighs as much as its nanoseconds say it should.

A zero-time section has no defined throughput: the snapshot reports
``math.inf`` (gas but no time) or ``math.nan`` (nothing at all) instead of
raising.

Usage::

    metrics = MetricsAggregator()
    metrics.reset_cumulative()
    for result in results:
        metrics.record(result)
    snap = metrics.snapshot_cumulative()
    print(snap.gas, snap.nanos, snap.gas_per_second)
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Dict

logger = logging.getLogger("cartevm.metrics")

NANOS_PER_SECOND = 1_000_000_000


def gas_per_second(gas: int, nanos: int) -> float:
    """``gas * 1e9 / nanos`` with ``inf``/``nan`` for a zero denominator."""
    if nanos == 0:
        return math.nan if gas == 0 else math.inf
    return gas * NANOS_PER_SECOND / nanos


@dataclass(frozen=True)
class CumulativeSnapshot:
    gas: int = 0
    nanos: int = 0
    executions: int = 0

    @property
    def gas_per_second(self) -> float:
        return gas_per_second(self.gas, self.nanos)

    def to_dict(self) -> Dict[str, Any]:
        throughput = self.gas_per_second
        return {
            "gas": self.gas,
            "nanos": self.nanos,
            "executions": self.executions,
            "gas_per_second": throughput if math.isfinite(throughput) else None,
        }


class MetricsAggregator:
    """Thread-safe cumulative counters for a report section.

    Each section owns its own aggregator. Parallel workers should keep one
    aggregator each and :meth:`merge` them at the end.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._gas = 0
        self._nanos = 0
        self._executions = 0

    def record(self, result) -> None:
        """Add one :class:`~cartevm.driver.ExecutionResult` to the totals."""
        with self._lock:
            self._gas += result.gas_used
            self._nanos += result.elapsed_nanos
            self._executions += 1

    def reset_cumulative(self) -> None:
        with self._lock:
            self._gas = 0
            self._nanos = 0
            self._executions = 0

    def snapshot_cumulative(self) -> CumulativeSnapshot:
        with self._lock:
            return CumulativeSnapshot(gas=self._gas, nanos=self._nanos, executions=self._executions)

    def merge(self, other: "MetricsAggregator") -> None:
        """Fold *other*'s totals into this aggregator."""
        snap = other.snapshot_cumulative()
        with self._lock:
            self._gas += snap.gas
            self._nanos += snap.nanos
            self._executions += snap.executions
        logger.debug("Merged %d executions into aggregator", snap.executions)

    def __repr__(self) -> str:
        snap = self.snapshot_cumulative()
        return f"MetricsAggregator(gas={snap.gas}, nanos={snap.nanos}, executions={snap.executions})"
