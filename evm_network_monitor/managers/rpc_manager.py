"""
RPC调用管理器

负责 Web3 连接管理、JSON-RPC 调用、超时控制和调用统计
网关本身不做重试，重试策略由调用方（确认跟踪器等）决定
"""

import asyncio
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence, Union

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.exceptions import Web3Exception
from web3.types import RPCEndpoint

from evm_network_monitor.config.monitor_config import MonitorConfig
from evm_network_monitor.exceptions import RpcError
from evm_network_monitor.models.data_types import CallResult, PerformanceMetrics, to_quantity
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)

BlockId = Union[int, str]


def _block_param(block: BlockId) -> str:
    if isinstance(block, int):
        return hex(block)
    return block


class RpcGateway:
    """JSON-RPC 网关 - 负责调用、缓存和统计"""

    def __init__(self, config: MonitorConfig, w3: Optional[AsyncWeb3] = None):
        self.config = config
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            config.rpc_url,
            request_kwargs={'timeout': aiohttp.ClientTimeout(total=config.rpc_timeout)},
            exception_retry_configuration=None,
        ))

        # 缓存相关
        self.cached_block_number: Optional[int] = None
        self.cache_time: float = 0

        # 统计相关
        self.rpc_calls: int = 0
        self.rpc_errors: int = 0
        self.cache_hits: int = 0
        self.cache_misses: int = 0
        self.rpc_calls_by_type: Dict[str, int] = defaultdict(int)
        self.start_time: float = time.time()
        self.last_success_time: float = 0

    def log_rpc_call(self, method: str) -> None:
        """记录RPC调用统计"""
        self.rpc_calls += 1
        self.rpc_calls_by_type[method] += 1

    async def call(self, method: str, params: Optional[Sequence[Any]] = None,
                   timeout: Optional[float] = None) -> Any:
        """发起一次 JSON-RPC 调用

        Raises:
            RpcError: 超时、连接失败、HTTP 错误、响应格式错误或节点返回 error
        """
        timeout = timeout or self.config.rpc_timeout
        self.log_rpc_call(method)

        try:
            response = await asyncio.wait_for(
                self.w3.provider.make_request(RPCEndpoint(method), list(params or [])),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self.rpc_errors += 1
            raise RpcError(f"请求超时 ({timeout}s)", method=method, is_transport=True)
        except (aiohttp.ClientError, OSError, Web3Exception, ValueError) as e:
            self.rpc_errors += 1
            raise RpcError(f"请求失败: {e}", method=method, is_transport=True) from e

        if not isinstance(response, dict):
            self.rpc_errors += 1
            raise RpcError(f"响应格式错误: {response!r}", method=method, is_transport=True)

        error = response.get('error')
        if error:
            self.rpc_errors += 1
            if isinstance(error, dict):
                raise RpcError(error.get('message', str(error)), method=method,
                               code=error.get('code'))
            raise RpcError(str(error), method=method)

        if 'result' not in response:
            self.rpc_errors += 1
            raise RpcError("响应缺少 result 字段", method=method, is_transport=True)

        self.last_success_time = time.time()
        return response['result']

    async def safe_call(self, method: str, params: Optional[Sequence[Any]] = None,
                        timeout: Optional[float] = None) -> CallResult:
        """调用并把失败包装为 CallResult，不抛出 RpcError"""
        try:
            return CallResult.ok(await self.call(method, params, timeout))
        except RpcError as e:
            logger.debug(f"RPC 调用失败: {e}")
            return CallResult.failed(e)

    async def get_block_number(self, timeout: Optional[float] = None) -> int:
        """获取最新区块号（同时刷新缓存）"""
        number = to_quantity(await self.call('eth_blockNumber', [], timeout))
        self.cached_block_number = number
        self.cache_time = time.time()
        return number

    async def get_cached_block_number(self) -> int:
        """获取缓存的区块号"""
        current_time = time.time()

        if (self.cached_block_number is None or
                current_time - self.cache_time > self.config.cache_ttl):
            self.cache_misses += 1
            return await self.get_block_number()

        self.cache_hits += 1
        return self.cached_block_number

    async def get_block(self, block: BlockId, full_transactions: bool = False) -> Optional[Dict[str, Any]]:
        """获取区块，区块不存在时返回 None"""
        return await self.call('eth_getBlockByNumber', [_block_param(block), full_transactions])

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """获取交易，节点不认识该交易时返回 None"""
        return await self.call('eth_getTransactionByHash', [tx_hash])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """获取回执，尚未打包时返回 None"""
        return await self.call('eth_getTransactionReceipt', [tx_hash])

    async def get_gas_price(self) -> int:
        """获取当前Gas价格（wei）"""
        return to_quantity(await self.call('eth_gasPrice', []))

    async def get_chain_id(self) -> int:
        return to_quantity(await self.call('eth_chainId', []))

    async def get_fee_history(self, block_count: int, newest_block: BlockId = 'latest',
                              reward_percentiles: Optional[List[float]] = None) -> Dict[str, Any]:
        """获取费用历史，数值字段已解码为 int"""
        result = await self.call('eth_feeHistory', [
            hex(block_count), _block_param(newest_block), reward_percentiles or []
        ])
        result = dict(result or {})
        if 'oldestBlock' in result:
            result['oldestBlock'] = to_quantity(result['oldestBlock'])
        if 'baseFeePerGas' in result:
            result['baseFeePerGas'] = [to_quantity(v) for v in result['baseFeePerGas']]
        if 'reward' in result:
            result['reward'] = [[to_quantity(v) for v in row] for row in result['reward']]
        return result

    def get_performance_stats(self) -> PerformanceMetrics:
        """获取性能统计信息"""
        runtime = time.time() - self.start_time
        avg_rpc_per_second = self.rpc_calls / runtime if runtime > 0 else 0

        total_requests = self.cache_hits + self.cache_misses
        cache_hit_rate = (self.cache_hits / total_requests) if total_requests > 0 else 0

        return PerformanceMetrics(
            rpc_calls=self.rpc_calls,
            rpc_errors=self.rpc_errors,
            cache_hits=self.cache_hits,
            cache_misses=self.cache_misses,
            avg_rpc_per_second=avg_rpc_per_second,
            cache_hit_rate=cache_hit_rate * 100,
            rpc_calls_by_type=dict(self.rpc_calls_by_type)
        )

    async def test_connection(self) -> Dict[str, Any]:
        """测试网络连接并返回基本信息"""
        logger.info(f"正在测试RPC {self.config.rpc_url} 连接...")
        try:
            latest_block = await self.get_block_number(timeout=self.config.probe_timeout)
            gas_price = await self.get_gas_price()
            chain_id = await self.get_chain_id()
            gas_price_gwei = Web3.from_wei(gas_price, 'gwei')

            return {
                'success': True,
                'latest_block': latest_block,
                'gas_price_gwei': float(gas_price_gwei),
                'chain_id': chain_id,
                'network': self.config.chain_name,
                'rpc_url': self.config.rpc_url
            }
        except RpcError as e:
            return {
                'success': False,
                'error': str(e),
                'rpc_url': self.config.rpc_url
            }

    def reset_stats(self) -> None:
        """重置统计数据"""
        self.rpc_calls = 0
        self.rpc_errors = 0
        self.cache_hits = 0
        self.cache_misses = 0
        self.rpc_calls_by_type.clear()
        self.start_time = time.time()
        logger.info("RPC统计数据已重置")

    def is_healthy(self) -> bool:
        """最近一次成功调用在超时窗口内，且错误率低于一半"""
        if self.cached_block_number is None or self.last_success_time == 0:
            return False
        if time.time() - self.last_success_time > self.config.rpc_timeout:
            return False
        return self.rpc_errors * 2 < max(self.rpc_calls, 1)

    async def close(self) -> None:
        """关闭底层 HTTP 会话"""
        disconnect = getattr(self.w3.provider, 'disconnect', None)
        if disconnect is None:
            return
        try:
            await disconnect()
        except (aiohttp.ClientError, OSError, Web3Exception) as e:
            logger.warning(f"关闭 RPC 连接时出错: {e}")
