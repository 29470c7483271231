"""
Tests for cumulative benchmark metrics (cartevm.metrics).
"""

import math
import threading

from cartevm.driver import ExecutionResult, ExecutionStatus
from cartevm.metrics import CumulativeSnapshot, MetricsAggregator, gas_per_second


def _result(gas, nanos):
    return ExecutionResult(status=ExecutionStatus.NORMAL, gas_used=gas, elapsed_nanos=nanos)


class TestCumulativeCounters:
    def test_reset_then_nothing_recorded(self):
        metrics = MetricsAggregator()
        metrics.record(_result(10, 20))
        metrics.reset_cumulative()
        snap = metrics.snapshot_cumulative()
        assert (snap.gas, snap.nanos, snap.executions) == (0, 0, 0)

    def test_sums_are_exact(self):
        metrics = MetricsAggregator()
        gas = [21_000, 3, 2 ** 62, 7]
        nanos = [1_000_003, 999, 2 ** 61, 1]
        for g, t in zip(gas, nanos):
            metrics.record(_result(g, t))
        snap = metrics.snapshot_cumulative()
        assert snap.gas == sum(gas)
        assert snap.nanos == sum(nanos)
        assert snap.executions == 4

    def test_throughput_from_sums_not_average_of_ratios(self):
        metrics = MetricsAggregator()
        metrics.record(_result(1_000, 1_000))      # 1e9 gas/s
        metrics.record(_result(1_000, 9_000))      # ~1.1e8 gas/s
        snap = metrics.snapshot_cumulative()
        assert snap.gas_per_second == 2_000 * 1e9 / 10_000

    def test_merge(self):
        a, b = MetricsAggregator(), MetricsAggregator()
        a.record(_result(5, 7))
        b.record(_result(11, 13))
        b.record(_result(1, 1))
        a.merge(b)
        assert a.snapshot_cumulative() == CumulativeSnapshot(gas=17, nanos=21, executions=3)

    def test_concurrent_recording(self):
        metrics = MetricsAggregator()

        def worker():
            for _ in range(500):
                metrics.record(_result(2, 3))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        snap = metrics.snapshot_cumulative()
        assert snap.gas == 4_000
        assert snap.nanos == 6_000


class TestThroughputSentinels:
    def test_zero_nanos_with_gas_is_infinite(self):
        assert math.isinf(gas_per_second(100, 0))

    def test_nothing_recorded_is_nan(self):
        snap = MetricsAggregator().snapshot_cumulative()
        assert math.isnan(snap.gas_per_second)

    def test_to_dict_hides_undefined_throughput(self):
        assert CumulativeSnapshot(gas=1, nanos=0).to_dict()["gas_per_second"] is None
        assert CumulativeSnapshot(gas=2, nanos=1).to_dict()["gas_per_second"] == 2e9
