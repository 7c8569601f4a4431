"""区块窗口与指标计算测试"""

import pytest

from evm_network_monitor.core.block_window import BlockWindow
from evm_network_monitor.core.metrics_calculator import calculate_metrics
from evm_network_monitor.models.data_types import BlockSample, NetworkMetrics


def sample(number, timestamp, txs=2, gas_used=500, gas_limit=1000):
    return BlockSample(number=number, hash=f"0x{number:064x}", timestamp=timestamp,
                       transaction_count=txs, gas_used=gas_used, gas_limit=gas_limit)


class TestBlockWindow:

    def test_ingest_prepends_newest_first(self):
        window = BlockWindow(5)
        for n in (1, 2, 3):
            assert window.ingest(sample(n, 1000 + n))
        assert [s.number for s in window.samples] == [3, 2, 1]
        assert window.latest_number == 3

    def test_ingest_not_newer_is_noop(self):
        window = BlockWindow(5)
        window.ingest(sample(10, 1000))
        assert not window.ingest(sample(10, 1000))
        assert not window.ingest(sample(7, 990))
        assert [s.number for s in window.samples] == [10]

    def test_capacity_evicts_oldest(self):
        window = BlockWindow(3)
        for n in range(1, 6):
            window.ingest(sample(n, 1000 + n))
        assert [s.number for s in window.samples] == [5, 4, 3]

    def test_backfill_sorts_and_dedups(self):
        window = BlockWindow(3)
        added = window.backfill([sample(8, 1016), sample(10, 1020), sample(9, 1018),
                                 sample(10, 1020), sample(7, 1014)])
        assert added == 4
        assert [s.number for s in window.samples] == [10, 9, 8]

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            BlockWindow(0)


class TestMetricsCalculator:

    def test_three_blocks_two_seconds_apart(self):
        window = BlockWindow(20)
        for n, ts in ((1, 1000), (2, 1002), (3, 1004)):
            window.ingest(sample(n, ts, txs=2))

        metrics = calculate_metrics(window.samples, gas_price=5)

        assert metrics.avg_block_time == 2.0
        assert metrics.tps == 1.5
        assert metrics.total_transactions == 6
        assert metrics.gas_utilization == 50.0
        assert metrics.avg_gas_used == 500
        assert metrics.gas_price == 5

    def test_fewer_than_two_samples_is_zero(self):
        assert calculate_metrics([], gas_price=9) == NetworkMetrics(gas_price=9)
        assert calculate_metrics([sample(1, 1000)]) == NetworkMetrics()

    def test_zero_span(self):
        metrics = calculate_metrics([sample(2, 1000), sample(1, 1000)])
        assert metrics.tps == 0.0
        assert metrics.avg_block_time == 0.0
        assert metrics.total_transactions == 4

    def test_gas_utilization_rounded(self):
        metrics = calculate_metrics([sample(2, 1003, gas_used=1, gas_limit=3),
                                     sample(1, 1000, gas_used=0, gas_limit=3)])
        assert metrics.gas_utilization == 16.67

    def test_zero_gas_limit(self):
        metrics = calculate_metrics([sample(2, 1002, gas_limit=0), sample(1, 1000, gas_limit=0)])
        assert metrics.gas_utilization == 0.0
