"""
交易索引器

为跟踪账户维护去重、持久化的交易记录集合：
1. 扫描最近 N 个区块，找出 from/to 为跟踪账户的交易
2. 检查事件通道送来的每个新区块
3. 接收用户刚提交的交易（乐观写入 pending 记录）
"""

import asyncio
import re
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional

from evm_network_monitor.config.monitor_config import MonitorConfig
from evm_network_monitor.exceptions import RpcError
from evm_network_monitor.managers.rpc_manager import RpcGateway
from evm_network_monitor.models.data_types import (
    TransactionRecord, TransactionStatus, TransactionType, to_hex_str, to_quantity
)
from evm_network_monitor.models.transaction_adapter import (
    involves_account, merge_records, record_from_rpc
)
from evm_network_monitor.storage.persistent_cache import PersistentCache
from evm_network_monitor.utils.address_utils import normalize_account, short_address
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)

_TX_HASH_RE = re.compile(r'^0x[0-9a-fA-F]{64}$')


class TransactionIndexer:
    """账户交易索引器"""

    def __init__(self, config: MonitorConfig, gateway: RpcGateway, cache: PersistentCache,
                 account: str, stop_event: Optional[asyncio.Event] = None):
        self.config = config
        self.gateway = gateway
        self.cache = cache
        self.account = normalize_account(account)
        self.stop_event = stop_event
        self.records: List[TransactionRecord] = []

        # 统计信息
        self.stats: Dict[str, int] = defaultdict(int)
        self.last_scan_time: float = 0

    def load_cached(self) -> int:
        """从缓存恢复记录，返回恢复数量"""
        cached = self.cache.load(self.account)
        if cached:
            self.records = merge_records(cached, self.records, self.config.cache_max_records)
            logger.info(f"📂 从缓存恢复 {len(cached)} 条交易记录 ({short_address(self.account)})")
        return len(cached or [])

    def get_record(self, tx_hash: str) -> Optional[TransactionRecord]:
        tx_hash = tx_hash.lower()
        for record in self.records:
            if record.hash == tx_hash:
                return record
        return None

    def pending_records(self) -> List[TransactionRecord]:
        return [r for r in self.records if r.is_pending]

    @property
    def stopped(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def merge(self, incoming: List[TransactionRecord]) -> List[TransactionRecord]:
        """合并记录并持久化，返回合并后的集合；账户会话停止后不再写入"""
        if self.stopped:
            if incoming:
                logger.debug(f"账户 {short_address(self.account)} 已停止跟踪，丢弃 {len(incoming)} 条记录")
            return self.records
        self.records = merge_records(self.records, incoming, self.config.cache_max_records)
        self.persist()
        return self.records

    def persist(self) -> bool:
        return self.cache.save(self.account, self.records)

    def apply_resolved(self, record: TransactionRecord) -> None:
        """确认跟踪器解析出终态后回写"""
        self.merge([record])
        self.stats['resolved'] += 1

    async def _fetch_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """尽力获取回执，失败视为尚未打包"""
        try:
            return await self.gateway.get_transaction_receipt(tx_hash)
        except RpcError as e:
            self.stats['receipt_errors'] += 1
            logger.debug(f"获取回执失败 {tx_hash[:10]}...: {e}")
            return None

    async def _extract_records(self, block: Dict[str, Any]) -> List[TransactionRecord]:
        """从包含完整交易的区块中提取跟踪账户相关记录"""
        timestamp = to_quantity(block.get('timestamp'))
        found: List[TransactionRecord] = []
        for tx in block.get('transactions') or []:
            if not isinstance(tx, dict) or not involves_account(tx, self.account):
                continue
            tx_hash = to_hex_str(tx['hash'])
            receipt = await self._fetch_receipt(tx_hash)
            found.append(record_from_rpc(tx, self.account, block_timestamp=timestamp, receipt=receipt))
        return found

    async def process_block(self, block: Dict[str, Any]) -> List[TransactionRecord]:
        """处理新区块，返回其中与账户相关的记录"""
        found = await self._extract_records(block)
        self.stats['blocks_processed'] += 1
        if found:
            self.merge(found)
            self.stats['transactions_indexed'] += len(found)
            for record in found:
                self._log_record(record)
        return found

    async def scan_recent_blocks(self, depth: Optional[int] = None) -> int:
        """扫描最近 depth 个区块，返回找到的交易数量

        区块高度获取失败时放弃本次扫描；单个区块获取失败时跳过该区块
        """
        depth = depth or self.config.index_scan_blocks
        try:
            height = await self.gateway.get_cached_block_number()
        except RpcError as e:
            self.stats['scan_errors'] += 1
            logger.warning(f"⚠️ 交易扫描失败，无法获取区块高度: {e}")
            return 0

        logger.info(f"🔍 扫描最近 {depth} 个区块 ({max(height - depth + 1, 0)} - {height})，"
                    f"账户 {short_address(self.account)}")
        found: List[TransactionRecord] = []
        for number in range(height, max(height - depth, -1), -1):
            try:
                block = await self.gateway.get_block(number, True)
            except RpcError as e:
                self.stats['scan_errors'] += 1
                logger.warning(f"⚠️ 扫描区块 {number} 失败: {e}")
                continue
            if block:
                found.extend(await self._extract_records(block))

        self.merge(found)
        self.stats['scans'] += 1
        self.stats['transactions_indexed'] += len(found)
        self.last_scan_time = time.time()
        logger.info(f"✅ 扫描完成，找到 {len(found)} 条交易，当前共 {len(self.records)} 条")
        return len(found)

    def add_pending_transaction(self, tx_hash: str, to: Optional[str], value: int,
                                gas_price: int, nonce: Optional[int] = None) -> TransactionRecord:
        """写入用户刚提交的交易（pending）

        Raises:
            ValueError: 交易哈希格式错误
            InvalidAccountError: to 地址格式错误
        """
        if not isinstance(tx_hash, str) or not _TX_HASH_RE.match(tx_hash):
            raise ValueError(f"无效的交易哈希: {tx_hash!r}")
        to_address = normalize_account(to) if to else None

        record = TransactionRecord(
            hash=tx_hash.lower(),
            from_address=self.account,
            to_address=to_address,
            value=int(value),
            gas_price=int(gas_price),
            status=TransactionStatus.PENDING,
            tx_type=TransactionType.CONTRACT if to_address is None else TransactionType.SEND,
            timestamp=int(time.time()),
            nonce=nonce,
        )
        self.merge([record])
        self.stats['pending_added'] += 1
        logger.info(f"📝 新增待确认交易 {record.hash[:10]}... ({record.tx_type.value})")
        return self.get_record(record.hash) or record

    def _log_record(self, record: TransactionRecord) -> None:
        scan = f" | {self.config.scan_url}/tx/{record.hash}" if self.config.scan_url else ""
        logger.info(
            f"📨 {record.tx_type.value}: {short_address(record.from_address)} => "
            f"{short_address(record.to_address or '(合约创建)')} | 状态: {record.status.value} | "
            f"区块: {record.block_number}{scan}"
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            'account': self.account,
            'records': len(self.records),
            'pending': len(self.pending_records()),
            **dict(self.stats),
        }
