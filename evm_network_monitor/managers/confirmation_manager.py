"""
确认管理器

为每笔 pending 交易轮询回执，直到拿到终态或重试次数耗尽
第 k 次查询失败后等待 k × base_delay 再进行下一次查询
"""

import asyncio
from collections import defaultdict
from typing import Awaitable, Callable, Dict, Iterable, Optional

from evm_network_monitor.managers.rpc_manager import RpcGateway
from evm_network_monitor.models.data_types import (
    ConfirmationOutcome, TransactionRecord, TransactionStatus, to_quantity
)
from evm_network_monitor.models.transaction_adapter import apply_receipt, status_from_receipt
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)

ResolvedCallback = Callable[[TransactionRecord], None]


class ConfirmationTracker:
    """确认跟踪器 - 每个交易哈希最多一个跟踪任务"""

    def __init__(self, gateway: RpcGateway, max_attempts: int = 5, base_delay: float = 1.0,
                 on_resolved: Optional[ResolvedCallback] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 scan_url: str = "",
                 stop_event: Optional[asyncio.Event] = None):
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.on_resolved = on_resolved
        self._sleep = sleep
        self.scan_url = scan_url
        self.stop_event = stop_event

        self._tasks: Dict[str, asyncio.Task] = {}
        self.outcomes: Dict[str, ConfirmationOutcome] = {}

        # 统计信息
        self.stats: Dict[str, int] = defaultdict(int)

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    def is_tracking(self, tx_hash: str) -> bool:
        task = self._tasks.get(tx_hash.lower())
        return task is not None and not task.done()

    async def _fetch_receipt(self, tx_hash: str) -> Optional[dict]:
        """查询回执；RPC 错误视为尚未打包"""
        result = await self.gateway.safe_call('eth_getTransactionReceipt', [tx_hash])
        if not result.success:
            self.stats['rpc_errors'] += 1
            if result.is_transient:
                self.stats['transient_errors'] += 1
            logger.debug(f"查询回执失败 {tx_hash[:10]}...: {result.error}")
            return None
        return result.value

    async def _block_timestamp(self, receipt: dict) -> Optional[int]:
        block_number = to_quantity(receipt.get('blockNumber'))
        if block_number is None:
            return None
        result = await self.gateway.safe_call('eth_getBlockByNumber', [hex(block_number), False])
        if not result.success:
            logger.debug(f"获取区块 {block_number} 时间戳失败: {result.error}")
            return None
        return to_quantity(result.value.get('timestamp')) if result.value else None

    async def _exhausted_outcome(self, tx_hash: str) -> ConfirmationOutcome:
        """重试耗尽后区分“仍在交易池”与“节点查不到”"""
        result = await self.gateway.safe_call('eth_getTransactionByHash', [tx_hash])
        if not result.success:
            logger.debug(f"查询交易 {tx_hash[:10]}... 失败: {result.error}")
            return ConfirmationOutcome.NOT_MINED
        return ConfirmationOutcome.NOT_MINED if result.value else ConfirmationOutcome.NOT_FOUND

    async def track(self, record: TransactionRecord) -> ConfirmationOutcome:
        """跟踪单笔交易直到终态或重试耗尽

        拿到回执时原地更新记录并回调 on_resolved；耗尽时记录保持 pending
        """
        tx_hash = record.hash
        self.stats['tracked'] += 1

        try:
            for attempt in range(1, self.max_attempts + 1):
                self.stats['attempts'] += 1
                receipt = await self._fetch_receipt(tx_hash)
                # 回执还没有区块号和 status 时按未打包处理
                if status_from_receipt(receipt) is not TransactionStatus.PENDING:
                    apply_receipt(record, receipt, await self._block_timestamp(receipt))
                    self._log_resolved(record, attempt)
                    self.stats[record.status.value] += 1
                    if self.on_resolved is not None:
                        self.on_resolved(record)
                    return self._finish(tx_hash, ConfirmationOutcome.CONFIRMED)

                if attempt < self.max_attempts:
                    await self._sleep(attempt * self.base_delay)

            outcome = await self._exhausted_outcome(tx_hash)
        except asyncio.CancelledError:
            self._finish(tx_hash, ConfirmationOutcome.CANCELLED)
            raise

        if outcome is ConfirmationOutcome.NOT_FOUND:
            logger.warning(f"⚠️ 交易 {tx_hash[:10]}... 在 {self.max_attempts} 次查询后仍无回执，"
                           f"且节点查不到该交易（可能已被丢弃或替换）")
        else:
            logger.info(f"⏳ 交易 {tx_hash[:10]}... 在 {self.max_attempts} 次查询后仍未打包，保持 pending")
        return self._finish(tx_hash, outcome)

    def _finish(self, tx_hash: str, outcome: ConfirmationOutcome) -> ConfirmationOutcome:
        self.outcomes[tx_hash] = outcome
        self.stats[outcome.value] += 1
        return outcome

    def schedule(self, record: TransactionRecord) -> Optional[asyncio.Task]:
        """为 pending 记录启动跟踪任务；已在跟踪或已是终态时不重复启动"""
        if record.status is not TransactionStatus.PENDING:
            return None
        if self.stop_event is not None and self.stop_event.is_set():
            logger.debug(f"跟踪器已停止，忽略交易 {record.hash[:10]}...")
            return None
        existing = self._tasks.get(record.hash)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(self.track(record), name=f"confirm-{record.hash[:10]}")
        self._tasks[record.hash] = task
        task.add_done_callback(self._on_task_done)
        logger.debug(f"开始跟踪交易确认: {record.hash[:10]}...")
        return task

    def schedule_all(self, records: Iterable[TransactionRecord]) -> int:
        """为所有 pending 记录启动跟踪，返回新启动的任务数"""
        started = 0
        for record in records:
            already = self.is_tracking(record.hash)
            if self.schedule(record) is not None and not already:
                started += 1
        return started

    def _on_task_done(self, task: asyncio.Task) -> None:
        for tx_hash, t in list(self._tasks.items()):
            if t is task:
                del self._tasks[tx_hash]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"❌ 确认跟踪任务异常: {task.exception()}", exc_info=task.exception())

    async def cancel_all(self) -> int:
        """取消所有跟踪任务，返回取消数量"""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"🛑 已取消 {len(tasks)} 个确认跟踪任务")
        self._tasks.clear()
        return len(tasks)

    def _log_resolved(self, record: TransactionRecord, attempt: int) -> None:
        icon = "✅" if record.status is TransactionStatus.SUCCESS else "❌"
        scan = f" | {self.scan_url}/tx/{record.hash}" if self.scan_url else ""
        logger.info(
            f"{icon} 交易确认: {record.hash[:10]}... 状态 {record.status.value} | "
            f"区块: {record.block_number} | Gas: {record.gas_used} | 第 {attempt} 次查询{scan}"
        )

    def get_stats(self) -> Dict[str, int]:
        return {'active': self.active_count, **dict(self.stats)}
