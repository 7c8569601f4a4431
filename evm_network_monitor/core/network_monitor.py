"""
网络监控器

协调各个组件，对外提供只读状态（指标、健康、交易记录、区块历史）和控制操作：
- 链级组件：RPC网关、区块源、区块窗口、健康评估、延迟探测
- 账户级组件：每个跟踪账户一个 AccountSession（交易索引器 + 确认跟踪器）
"""

import asyncio
import signal
import time
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional, Set

from evm_network_monitor.config.monitor_config import MonitorConfig
from evm_network_monitor.core.events import BlockEventChannel, NewBlockEvent
from evm_network_monitor.core.metrics_calculator import calculate_metrics
from evm_network_monitor.core.monitor_initializer import MonitorInitializer
from evm_network_monitor.core.network_validator import NetworkValidator
from evm_network_monitor.core.startup_logger import StartupLogger
from evm_network_monitor.exceptions import MonitorError, RpcError
from evm_network_monitor.managers.confirmation_manager import ConfirmationTracker
from evm_network_monitor.managers.rpc_manager import RpcGateway
from evm_network_monitor.models.data_types import (
    BlockSample, HealthState, NetworkMetrics, TransactionRecord
)
from evm_network_monitor.processors.transaction_indexer import TransactionIndexer
from evm_network_monitor.scheduler.periodic_task import PeriodicTask
from evm_network_monitor.storage.persistent_cache import PersistentCache
from evm_network_monitor.storage.stores import KeyValueStore
from evm_network_monitor.utils.address_utils import normalize_account, short_address
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class AccountSession:
    """单个跟踪账户的任务与状态"""

    def __init__(self, config: MonitorConfig, gateway: RpcGateway, cache: PersistentCache,
                 channel: BlockEventChannel, account: str,
                 sleep: Callable[[float], Any] = asyncio.sleep):
        self.account = normalize_account(account)
        self.channel = channel
        self.stop_event = asyncio.Event()
        self.indexer = TransactionIndexer(config, gateway, cache, self.account,
                                          stop_event=self.stop_event)
        self.tracker = ConfirmationTracker(
            gateway,
            max_attempts=config.confirmation_max_attempts,
            base_delay=config.confirmation_base_delay,
            on_resolved=self.indexer.apply_resolved,
            sleep=sleep,
            scan_url=config.scan_url,
            stop_event=self.stop_event,
        )
        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._scans: Set[asyncio.Task] = set()

    async def start(self, initial_scan: bool = True) -> None:
        """恢复缓存、订阅新区块，并执行一次初始扫描"""
        logger.info(f"👤 开始跟踪账户 {self.account}")
        self.indexer.load_cached()
        self.tracker.schedule_all(self.indexer.pending_records())

        self._queue = self.channel.subscribe()
        self._consumer = asyncio.create_task(self._consume_blocks(),
                                             name=f"indexer-{self.account[:10]}")
        if initial_scan:
            await self.refresh()

    async def refresh(self) -> int:
        """重新扫描最近区块，返回找到的交易数

        扫描在独立任务中运行，close() 会取消仍在进行的扫描，此时返回 0
        """
        if self.stop_event.is_set():
            return 0
        scan = asyncio.create_task(self.indexer.scan_recent_blocks(),
                                   name=f"scan-{self.account[:10]}")
        self._scans.add(scan)
        scan.add_done_callback(self._scans.discard)
        try:
            found = await asyncio.shield(scan)
        except asyncio.CancelledError:
            if not scan.cancelled():
                # 调用方被取消
                scan.cancel()
                raise
            logger.info(f"🛑 账户 {short_address(self.account)} 的扫描已取消")
            return 0

        self.tracker.schedule_all(self.indexer.pending_records())
        return found

    async def _consume_blocks(self) -> None:
        while not self.stop_event.is_set():
            event: Optional[NewBlockEvent] = await self._queue.get()
            if event is None:
                break
            try:
                found = await self.indexer.process_block(event.block)
                if found:
                    self.tracker.schedule_all(r for r in found if r.is_pending)
            except Exception as e:
                logger.error(f"❌ 处理区块 {event.number} 的账户交易失败: {e}", exc_info=True)

    def add_pending_transaction(self, tx_hash: str, to: Optional[str], value: int,
                                gas_price: int, nonce: Optional[int] = None) -> TransactionRecord:
        record = self.indexer.add_pending_transaction(tx_hash, to, value, gas_price, nonce)
        self.tracker.schedule(record)
        return record

    @property
    def transactions(self) -> List[TransactionRecord]:
        return list(self.indexer.records)

    async def close(self) -> None:
        """取消所有账户任务并保存记录"""
        self.stop_event.set()
        if self._queue is not None:
            self.channel.unsubscribe(self._queue)
            self._queue.put_nowait(None)
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
        scans = [s for s in self._scans if not s.done()]
        for scan in scans:
            scan.cancel()
        if scans:
            await asyncio.gather(*scans, return_exceptions=True)
        await self.tracker.cancel_all()
        self.indexer.persist()
        logger.info(f"👋 已停止跟踪账户 {short_address(self.account)}")


class NetworkMonitor:
    """主监控器类 - 协调各个组件"""

    def __init__(self, config: MonitorConfig, gateway: Optional[RpcGateway] = None,
                 store: Optional[KeyValueStore] = None,
                 clock: Optional[Callable[[], float]] = None,
                 sleep: Callable[[float], Any] = asyncio.sleep):
        """
        初始化监控器

        Args:
            config: 监控配置
            gateway: RPC 网关，为 None 时按配置创建
            store: 键值存储，为 None 时按配置创建
            clock: 健康评估时钟
            sleep: 确认跟踪使用的等待函数
        """
        self.config = config
        self.is_running = False
        self._sleep = sleep

        self.initializer = MonitorInitializer(config)
        components = self.initializer.init_core_components(gateway, clock)
        self.gateway: RpcGateway = components['gateway']
        self.channel: BlockEventChannel = components['channel']
        self.block_feed = components['block_feed']
        self.window = components['window']
        self.health_evaluator = components['health_evaluator']
        self.latency_probe = components['latency_probe']
        self.stats_reporter = components['stats_reporter']
        self.cache = self.initializer.init_cache(store)

        self.network_validator = NetworkValidator(self.gateway, config.chain_id)
        self.startup_logger = StartupLogger(config)

        self.session: Optional[AccountSession] = None
        self.metrics = NetworkMetrics()
        self.health = HealthState()
        self.gas_price: int = 0

        self._stop_event = asyncio.Event()
        self._periodic_tasks: List[PeriodicTask] = []
        self._window_queue: Optional[asyncio.Queue] = None
        self._window_consumer: Optional[asyncio.Task] = None
        self._shutdown_done = False

    # ------------------------------------------------------------------
    # 只读状态
    # ------------------------------------------------------------------

    @property
    def transactions(self) -> List[TransactionRecord]:
        return self.session.transactions if self.session else []

    @property
    def block_history(self) -> List[BlockSample]:
        return self.window.samples

    @property
    def tracked_account(self) -> Optional[str]:
        return self.session.account if self.session else None

    def get_status(self) -> Dict[str, Any]:
        """获取当前监控状态"""
        records = self.transactions
        pending = sum(1 for r in records if r.is_pending)
        monitor_status = self.stats_reporter.get_monitor_status(
            current_block=self.window.latest_number or 0,
            is_running=self.is_running,
            tracked_account=self.tracked_account or "",
            pending=pending,
            indexed=len(records),
        )
        status = {
            'chain': self.config.chain_name,
            'monitor': asdict(monitor_status),
            'metrics': self.metrics.to_dict(),
            'health': self.health.to_dict(),
            'rpc': asdict(self.gateway.get_performance_stats()),
            'tasks': [task.get_status() for task in self._periodic_tasks],
        }
        if self.session:
            status['indexer'] = self.session.indexer.get_stats()
            status['confirmations'] = self.session.tracker.get_stats()
        return status

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """启动监控（返回时后台任务已在运行）

        Raises:
            ChainMismatchError: 节点链ID与配置不一致
        """
        if self.is_running:
            logger.warning("监控器已在运行中")
            return

        await self.network_validator.check_network_connection()
        self.startup_logger.log_startup_info()
        self.is_running = True
        self._stop_event.clear()

        samples = await self.block_feed.backfill(self.config.block_window_size)
        self.window.backfill(samples)
        if samples:
            self.health_evaluator.mark_block_increase(self.window.latest_number)
        await self._refresh_gas_price()
        self._recompute()

        self._window_queue = self.channel.subscribe()
        self._window_consumer = asyncio.create_task(self._consume_window(), name="block-window")

        self._periodic_tasks = [
            PeriodicTask('block-feed', self.block_feed.poll_once,
                         self.config.block_poll_interval, self._stop_event),
            PeriodicTask('health-tick', self._health_tick,
                         self.config.health_tick_interval, self._stop_event),
            PeriodicTask('latency-probe', self._probe_latency,
                         self.config.latency_probe_interval, self._stop_event),
        ]
        for task in self._periodic_tasks:
            task.start()

        if self.config.tracked_account:
            await self.switch_account(self.config.tracked_account)

        logger.info("🔄 监控已启动")

    async def run_forever(self) -> None:
        """启动并阻塞到 graceful_shutdown 被调用"""
        await self.start()
        await self._stop_event.wait()

    async def _consume_window(self) -> None:
        """窗口消费者：新区块进入窗口后重新计算指标和健康状态"""
        while True:
            event: Optional[NewBlockEvent] = await self._window_queue.get()
            if event is None:
                break
            started = time.perf_counter()
            try:
                if self.window.ingest(event.sample):
                    self.health_evaluator.mark_block_increase(event.number)
                    await self._refresh_gas_price()
                    self._recompute()
                    self.stats_reporter.record_block_processed(time.perf_counter() - started)
            except Exception as e:
                logger.error(f"❌ 处理区块 {event.number} 失败: {e}", exc_info=True)

    async def _refresh_gas_price(self) -> None:
        """刷新 Gas 价格，失败时保留上一次的值"""
        try:
            self.gas_price = await self.gateway.get_gas_price()
        except RpcError as e:
            logger.warning(f"⚠️ 获取 Gas 价格失败，沿用上次的值: {e}")

    def _recompute(self) -> None:
        self.metrics = calculate_metrics(self.window.samples, self.gas_price)
        self.health = self.health_evaluator.evaluate()

    async def _health_tick(self) -> None:
        self.health = self.health_evaluator.evaluate()
        self.stats_reporter.observe(self.metrics, self.health)
        if self.stats_reporter.should_log_stats():
            self.stats_reporter.log_performance_stats(
                self.gateway, self.metrics, self.health, *self._session_stats()
            )

    async def _probe_latency(self) -> None:
        self.health_evaluator.update_latency(await self.latency_probe.measure())
        self.health = self.health_evaluator.evaluate()

    def _session_stats(self):
        if not self.session:
            return None, None
        return self.session.indexer.get_stats(), self.session.tracker.get_stats()

    # ------------------------------------------------------------------
    # 控制操作
    # ------------------------------------------------------------------

    async def refresh(self) -> Dict[str, int]:
        """立即拉取新区块并重新扫描账户交易"""
        blocks = await self.block_feed.poll_once()
        await self._refresh_gas_price()
        self._recompute()
        found = await self.session.refresh() if self.session else 0
        return {'blocks': blocks, 'transactions_found': found}

    def add_pending_transaction(self, tx_hash: str, to: Optional[str], value: int,
                                gas_price: int, nonce: Optional[int] = None) -> TransactionRecord:
        """登记用户刚提交的交易

        Raises:
            MonitorError: 未设置跟踪账户
            ValueError: 哈希或地址格式错误
        """
        if self.session is None:
            raise MonitorError("未设置跟踪账户，无法登记交易")
        return self.session.add_pending_transaction(tx_hash, to, value, gas_price, nonce)

    async def switch_account(self, account: Optional[str]) -> Optional[AccountSession]:
        """切换跟踪账户；传入空值表示停止跟踪

        Raises:
            InvalidAccountError: 账户地址格式错误（此时保留原有会话）
        """
        new_account = normalize_account(account) if account else None
        if self.session is not None:
            if self.session.account == new_account:
                return self.session
            await self.session.close()
            self.session = None

        if new_account is None:
            return None

        self.session = AccountSession(self.config, self.gateway, self.cache, self.channel,
                                      new_account, sleep=self._sleep)
        await self.session.start()
        return self.session

    async def graceful_shutdown(self) -> None:
        """优雅关闭"""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        logger.info("开始优雅关闭...")

        self.is_running = False
        self._stop_event.set()
        for task in self._periodic_tasks:
            await task.stop()

        self.channel.close()
        if self._window_consumer is not None:
            await asyncio.gather(self._window_consumer, return_exceptions=True)

        indexer_stats, tracker_stats = self._session_stats()
        if self.session is not None:
            await self.session.close()

        self.stats_reporter.log_final_stats(self.gateway, self.metrics, self.health,
                                            indexer_stats, tracker_stats)
        await self.gateway.close()
        if self.cache.store is not None:
            self.cache.store.close()
        logger.info("监控器已优雅关闭")


def setup_signal_handlers(monitor: NetworkMonitor) -> None:
    """设置信号处理器"""
    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        logger.info(f"接收到信号 {signum}，开始优雅退出...")
        asyncio.ensure_future(monitor.graceful_shutdown())

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, signal_handler, signum)
        except NotImplementedError:
            logger.warning(f"当前平台不支持注册信号处理器 {signum}")
            return
    logger.info("信号处理器已注册")
