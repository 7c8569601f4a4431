"""
监控器初始化模块

负责创建链级组件（RPC网关、区块窗口、健康评估等）和账户级组件（缓存、索引器、确认跟踪器）
"""

import time
from typing import Any, Callable, Dict, Optional

from evm_network_monitor.config.monitor_config import MonitorConfig
from evm_network_monitor.core.block_feed import BlockFeed
from evm_network_monitor.core.block_window import BlockWindow
from evm_network_monitor.core.events import BlockEventChannel
from evm_network_monitor.core.health_evaluator import HealthEvaluator
from evm_network_monitor.core.latency_probe import LatencyProbe
from evm_network_monitor.exceptions import StorageError
from evm_network_monitor.managers.rpc_manager import RpcGateway
from evm_network_monitor.reports.statistics_reporter import StatisticsReporter
from evm_network_monitor.storage.persistent_cache import PersistentCache
from evm_network_monitor.storage.stores import KeyValueStore, create_store
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class MonitorInitializer:
    """监控器初始化器 - 负责创建和配置各个组件"""

    def __init__(self, config: MonitorConfig):
        self.config = config

    def init_core_components(self, gateway: Optional[RpcGateway] = None,
                             clock: Optional[Callable[[], float]] = None) -> Dict[str, Any]:
        """
        初始化链级组件

        Args:
            gateway: 外部提供的 RPC 网关（测试时注入），为 None 时新建
            clock: 健康评估使用的时钟（测试时注入）

        Returns:
            包含所有核心组件的字典
        """
        logger.info("🔧 初始化核心组件...")

        gateway = gateway or RpcGateway(self.config)
        channel = BlockEventChannel()

        components = {
            'gateway': gateway,
            'channel': channel,
            'block_feed': BlockFeed(gateway, channel, max_gap=self.config.block_window_size),
            'window': BlockWindow(self.config.block_window_size),
            'health_evaluator': HealthEvaluator(self.config.slow_threshold,
                                                self.config.stalled_threshold,
                                                clock=clock or time.monotonic),
            'latency_probe': LatencyProbe(gateway, timeout=self.config.probe_timeout),
            'stats_reporter': StatisticsReporter(self.config),
        }
        logger.debug("✅ 核心组件已创建")
        return components

    def init_cache(self, store: Optional[KeyValueStore] = None) -> PersistentCache:
        """
        初始化持久化缓存

        存储后端初始化失败时降级为无持久化模式
        """
        if store is None:
            try:
                store = create_store(self.config)
                logger.info(f"💾 存储后端: {store.name} ({self.config.storage_path})")
            except StorageError as e:
                logger.warning(f"⚠️ 存储初始化失败，将在无持久化模式下运行: {e}")
                store = None

        return PersistentCache(store, key_prefix=self.config.storage_key_prefix,
                               max_records=self.config.cache_max_records,
                               max_age=self.config.cache_max_age)
