"""
RPC 延迟探测

定期调用 eth_blockNumber 并测量往返时间，失败时返回哨兵值 9999
"""

import time

from evm_network_monitor.core.health_evaluator import LATENCY_UNAVAILABLE_MS
from evm_network_monitor.managers.rpc_manager import RpcGateway
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class LatencyProbe:
    """RPC 往返延迟探测器"""

    def __init__(self, gateway: RpcGateway, timeout: float = 5.0):
        self.gateway = gateway
        self.timeout = timeout
        self.last_latency_ms: int = 0
        self.failures: int = 0

    async def measure(self) -> int:
        """测量一次延迟（毫秒），不会抛出异常"""
        start = time.perf_counter()
        result = await self.gateway.safe_call('eth_blockNumber', [], timeout=self.timeout)
        if not result.success:
            self.failures += 1
            self.last_latency_ms = LATENCY_UNAVAILABLE_MS
            kind = "连接" if result.is_transient else "节点"
            logger.warning(f"⚠️ RPC 延迟探测失败（{kind}错误）: {result.error}")
            return self.last_latency_ms

        self.last_latency_ms = int((time.perf_counter() - start) * 1000)
        logger.debug(f"📶 RPC 延迟 {self.last_latency_ms}ms")
        return self.last_latency_ms
