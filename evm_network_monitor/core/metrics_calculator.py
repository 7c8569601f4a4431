"""
网络指标计算

纯函数：根据区块窗口推导 TPS、平均出块时间、Gas 使用率
"""

from typing import Sequence

from evm_network_monitor.models.data_types import BlockSample, NetworkMetrics


def calculate_metrics(samples: Sequence[BlockSample], gas_price: int = 0) -> NetworkMetrics:
    """计算网络指标

    Args:
        samples: 区块样本，最新在前
        gas_price: 最近一次获取到的 Gas 价格（wei）

    少于两个样本时除 gas_price 外全部为 0；时间跨度不为正时 TPS 和出块时间为 0
    """
    if len(samples) < 2:
        return NetworkMetrics(gas_price=gas_price)

    newest, oldest = samples[0], samples[-1]
    span = newest.timestamp - oldest.timestamp

    total_transactions = sum(s.transaction_count for s in samples)
    total_gas_used = sum(s.gas_used for s in samples)
    total_gas_limit = sum(s.gas_limit for s in samples)

    tps = total_transactions / span if span > 0 else 0.0
    avg_block_time = span / (len(samples) - 1) if span > 0 else 0.0
    gas_utilization = total_gas_used * 100 / total_gas_limit if total_gas_limit > 0 else 0.0

    return NetworkMetrics(
        tps=round(tps, 2),
        avg_block_time=round(avg_block_time, 2),
        gas_utilization=round(gas_utilization, 2),
        total_transactions=total_transactions,
        avg_gas_used=total_gas_used // len(samples),
        gas_price=gas_price,
    )
