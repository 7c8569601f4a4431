"""
网络健康评估

记录最近一次区块高度增长的时间，结合 RPC 延迟给出健康状态
评估器本身不发起 RPC 调用
"""

import time
from typing import Callable, Optional

from evm_network_monitor.models.data_types import HealthState, ProductionRate

LATENCY_UNAVAILABLE_MS = 9999


class HealthEvaluator:
    """出块速率与健康状态评估"""

    def __init__(self, slow_threshold: float = 6.0, stalled_threshold: float = 10.0,
                 clock: Callable[[], float] = time.monotonic):
        self.slow_threshold = slow_threshold
        self.stalled_threshold = stalled_threshold
        self._clock = clock
        self._last_increase: float = clock()
        self._last_height: Optional[int] = None
        self.rpc_latency_ms: int = 0
        self.state = HealthState()

    def mark_block_increase(self, block_number: Optional[int] = None) -> bool:
        """记录区块高度增长，高度未增长时不重置计时"""
        if block_number is not None:
            if self._last_height is not None and block_number <= self._last_height:
                return False
            self._last_height = block_number
        self._last_increase = self._clock()
        return True

    def update_latency(self, latency_ms: int) -> None:
        self.rpc_latency_ms = latency_ms

    def seconds_since_last_block(self) -> float:
        return max(0.0, self._clock() - self._last_increase)

    def classify(self, elapsed: float) -> ProductionRate:
        if elapsed > self.stalled_threshold:
            return ProductionRate.STALLED
        if elapsed > self.slow_threshold:
            return ProductionRate.SLOW
        return ProductionRate.NORMAL

    def evaluate(self) -> HealthState:
        """重新计算健康状态（幂等）"""
        elapsed = self.seconds_since_last_block()
        rate = self.classify(elapsed)
        self.state = HealthState(
            is_healthy=rate is ProductionRate.NORMAL,
            rpc_latency_ms=self.rpc_latency_ms,
            production_rate=rate,
            seconds_since_last_block=elapsed,
        )
        return self.state
