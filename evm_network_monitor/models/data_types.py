"""
监控数据类型定义

定义监控过程中使用的各种数据结构：区块样本、网络指标、健康状态、交易记录
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from web3 import Web3


def to_quantity(value: Any) -> Optional[int]:
    """把 JSON-RPC 的十六进制数量（或已解码的整数）转换为 int"""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"无效的数量值: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if value.startswith(('0x', '0X')):
            return Web3.to_int(hexstr=value)
        return int(value)
    raise ValueError(f"无效的数量值: {value!r}")


def to_hex_str(value: Any) -> Optional[str]:
    """把哈希/地址统一为 0x 开头的字符串"""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return str(value)


class ProductionRate(Enum):
    """出块速率"""
    NORMAL = "normal"
    SLOW = "slow"
    STALLED = "stalled"


class TransactionStatus(Enum):
    """交易状态"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class TransactionType(Enum):
    """交易相对跟踪账户的分类"""
    SEND = "send"
    RECEIVE = "receive"
    CONTRACT = "contract"


class ConfirmationOutcome(Enum):
    """确认跟踪的结果"""
    CONFIRMED = "confirmed"    # 拿到回执，状态已更新
    NOT_MINED = "not_mined"    # 重试耗尽，节点认识该交易但仍未打包
    NOT_FOUND = "not_found"    # 重试耗尽，节点查不到该交易（可能已被丢弃）
    CANCELLED = "cancelled"    # 账户切换或关闭时被取消


@dataclass(frozen=True)
class BlockSample:
    """区块样本 - 采集后不可变"""
    number: int
    hash: str
    timestamp: int
    transaction_count: int
    gas_used: int
    gas_limit: int
    base_fee: Optional[int] = None
    miner: str = ""

    @classmethod
    def from_rpc(cls, block: Dict[str, Any]) -> 'BlockSample':
        """从 eth_getBlockByNumber 的返回结果构建样本"""
        return cls(
            number=to_quantity(block['number']),
            hash=to_hex_str(block.get('hash')) or "",
            timestamp=to_quantity(block['timestamp']),
            transaction_count=len(block.get('transactions') or []),
            gas_used=to_quantity(block.get('gasUsed', 0)),
            gas_limit=to_quantity(block.get('gasLimit', 0)),
            base_fee=to_quantity(block.get('baseFeePerGas')),
            miner=to_hex_str(block.get('miner')) or "",
        )

    def __str__(self) -> str:
        return (f"BlockSample(number={self.number}, txs={self.transaction_count}, "
                f"gas={self.gas_used}/{self.gas_limit})")


@dataclass(frozen=True)
class NetworkMetrics:
    """网络指标 - 由区块窗口推导，不直接修改"""
    tps: float = 0.0
    avg_block_time: float = 0.0
    gas_utilization: float = 0.0
    total_transactions: int = 0
    avg_gas_used: int = 0
    gas_price: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tps': self.tps,
            'avg_block_time': self.avg_block_time,
            'gas_utilization': self.gas_utilization,
            'total_transactions': self.total_transactions,
            'avg_gas_used': str(self.avg_gas_used),
            'gas_price': str(self.gas_price),
        }


@dataclass(frozen=True)
class HealthState:
    """网络健康状态"""
    is_healthy: bool = True
    rpc_latency_ms: int = 0
    production_rate: ProductionRate = ProductionRate.NORMAL
    seconds_since_last_block: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_healthy': self.is_healthy,
            'rpc_latency_ms': self.rpc_latency_ms,
            'production_rate': self.production_rate.value,
            'seconds_since_last_block': round(self.seconds_since_last_block, 2),
        }


@dataclass
class TransactionRecord:
    """跟踪账户的交易记录（以 hash 为唯一键）"""
    hash: str
    from_address: str
    to_address: Optional[str]
    value: int
    gas_price: int
    status: TransactionStatus = TransactionStatus.PENDING
    tx_type: TransactionType = TransactionType.SEND
    timestamp: int = 0
    gas_used: Optional[int] = None
    block_number: Optional[int] = None
    block_hash: Optional[str] = None
    nonce: Optional[int] = None
    updated_at: float = field(default_factory=time.time)

    def __str__(self) -> str:
        return (f"TransactionRecord(hash={self.hash[:10]}..., "
                f"type={self.tx_type.value}, status={self.status.value}, "
                f"block={self.block_number})")

    @property
    def is_pending(self) -> bool:
        return self.status is TransactionStatus.PENDING

    def is_contract_creation(self) -> bool:
        """to 为空表示合约创建"""
        return self.to_address is None

    def touch(self) -> None:
        """记录最近一次更新时间"""
        self.updated_at = time.time()


@dataclass(frozen=True)
class CallResult:
    """单次调用的显式结果，区分成功值与失败原因"""
    success: bool
    value: Any = None
    error: Optional[Exception] = None

    @classmethod
    def ok(cls, value: Any) -> 'CallResult':
        return cls(success=True, value=value)

    @classmethod
    def failed(cls, error: Exception) -> 'CallResult':
        return cls(success=False, error=error)

    @property
    def is_transient(self) -> bool:
        """失败且属于传输类错误（超时、连接失败）"""
        return not self.success and bool(getattr(self.error, 'is_transport', False))


@dataclass
class PerformanceMetrics:
    """性能指标数据类"""
    rpc_calls: int = 0
    rpc_errors: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    avg_rpc_per_second: float = 0.0
    cache_hit_rate: float = 0.0
    rpc_calls_by_type: Dict[str, int] = None

    def __post_init__(self):
        if self.rpc_calls_by_type is None:
            self.rpc_calls_by_type = {}


@dataclass
class MonitorStatus:
    """监控状态数据类"""
    is_running: bool = False
    tracked_account: str = ""
    blocks_processed: int = 0
    pending_transactions: int = 0
    indexed_transactions: int = 0
    start_time: float = 0.0
    runtime_hours: float = 0.0
    current_block: int = 0

    def update_runtime(self, current_time: float) -> None:
        """更新运行时间"""
        if self.start_time > 0:
            self.runtime_hours = (current_time - self.start_time) / 3600
