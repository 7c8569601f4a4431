"""测试公共夹具：内存中的假链、假 RPC 网关、区块/交易构造器"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from evm_network_monitor.config.monitor_config import MonitorConfig
from evm_network_monitor.exceptions import RpcError
from evm_network_monitor.managers.rpc_manager import RpcGateway
from evm_network_monitor.storage.persistent_cache import PersistentCache
from evm_network_monitor.storage.stores import MemoryStore

ACCOUNT = "0x1111111111111111111111111111111111111111"
OTHER = "0x2222222222222222222222222222222222222222"
THIRD = "0x3333333333333333333333333333333333333333"
BASE_TIMESTAMP = 1_700_000_000


def tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


def make_tx(n: int, from_address: str, to_address: Optional[str], value: int = 0,
            gas_price: int = 10**9, nonce: int = 0) -> Dict[str, Any]:
    """构造 JSON-RPC 格式的交易（数量为十六进制字符串）"""
    return {
        'hash': tx_hash(n),
        'from': from_address,
        'to': to_address,
        'value': hex(value),
        'gasPrice': hex(gas_price),
        'gas': hex(21000),
        'nonce': hex(nonce),
        'input': '0x',
    }


def make_receipt(tx: Dict[str, Any], status: int = 1, gas_used: int = 21000) -> Dict[str, Any]:
    return {
        'transactionHash': tx['hash'],
        'status': hex(status),
        'gasUsed': hex(gas_used),
        'blockNumber': tx.get('blockNumber'),
        'blockHash': tx.get('blockHash'),
    }


def make_block(number: int, timestamp: int, transactions: Optional[List[Dict[str, Any]]] = None,
               gas_used: int = 1_000_000, gas_limit: int = 10_000_000) -> Dict[str, Any]:
    """构造包含完整交易的 JSON-RPC 区块"""
    block_hash = "0x" + format(number + 0xB10C, "064x")
    txs = []
    for tx in transactions or []:
        tx = dict(tx)
        tx['blockNumber'] = hex(number)
        tx['blockHash'] = block_hash
        txs.append(tx)
    return {
        'number': hex(number),
        'hash': block_hash,
        'timestamp': hex(timestamp),
        'gasUsed': hex(gas_used),
        'gasLimit': hex(gas_limit),
        'baseFeePerGas': hex(7),
        'miner': THIRD,
        'transactions': txs,
    }


class FakeChain:
    """内存中的链状态"""

    def __init__(self, chain_id: int = 1337, gas_price: int = 2 * 10**9):
        self.chain_id = chain_id
        self.gas_price = gas_price
        self.blocks: Dict[int, Dict[str, Any]] = {}
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.receipts: Dict[str, Dict[str, Any]] = {}

    @property
    def height(self) -> int:
        return max(self.blocks) if self.blocks else 0

    def add_block(self, transactions: Optional[List[Dict[str, Any]]] = None,
                  timestamp: Optional[int] = None, with_receipts: bool = True,
                  receipt_status: int = 1, **kwargs) -> Dict[str, Any]:
        number = self.height + 1
        if timestamp is None:
            timestamp = BASE_TIMESTAMP + number * 2
        block = make_block(number, timestamp, transactions, **kwargs)
        self.blocks[number] = block
        for tx in block['transactions']:
            self.transactions[tx['hash']] = tx
            if with_receipts:
                self.receipts[tx['hash']] = make_receipt(tx, status=receipt_status)
        return block

    def add_blocks(self, count: int) -> None:
        for _ in range(count):
            self.add_block()


class FakeGateway(RpcGateway):
    """用假链响应 JSON-RPC 调用的网关，保留真实网关的解码与统计逻辑"""

    def __init__(self, config: MonitorConfig, chain: FakeChain):
        super().__init__(config)
        self.chain = chain
        self.failing: set = set()
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls: List[tuple] = []
        self.closed = False

    async def call(self, method: str, params=None, timeout=None):
        params = list(params or [])
        self.log_rpc_call(method)
        self.calls.append((method, params))
        await asyncio.sleep(0)
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()

        if method in self.failing or '*' in self.failing:
            self.rpc_errors += 1
            raise RpcError("模拟连接失败", method=method, is_transport=True)

        result = self._dispatch(method, params)
        self.last_success_time = 1.0
        return result

    def _dispatch(self, method: str, params: list):
        chain = self.chain
        if method == 'eth_blockNumber':
            return hex(chain.height)
        if method == 'eth_getBlockByNumber':
            number = chain.height if params[0] == 'latest' else int(params[0], 16)
            block = chain.blocks.get(number)
            if block is None:
                return None
            if params[1]:
                return block
            return {**block, 'transactions': [tx['hash'] for tx in block['transactions']]}
        if method == 'eth_getTransactionByHash':
            return chain.transactions.get(params[0])
        if method == 'eth_getTransactionReceipt':
            return chain.receipts.get(params[0])
        if method == 'eth_gasPrice':
            return hex(chain.gas_price)
        if method == 'eth_chainId':
            return hex(chain.chain_id)
        raise RpcError("method not found", method=method, code=-32601)

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def config():
    return MonitorConfig(
        chain_name='local',
        rpc_url='http://localhost:8545',
        scan_url='',
        chain_id=1337,
        tracked_account='',
        block_window_size=20,
        index_scan_blocks=10,
        block_poll_interval=3600,
        health_tick_interval=3600,
        latency_probe_interval=3600,
        confirmation_max_attempts=5,
        confirmation_base_delay=1.0,
        cache_max_records=100,
        storage_backend='memory',
        api_enabled=False,
    )


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def gateway(config, chain):
    return FakeGateway(config, chain)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def cache(store):
    return PersistentCache(store, max_records=100)


@pytest.fixture
def clock():
    return FakeClock()
