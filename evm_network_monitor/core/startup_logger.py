"""
启动信息记录模块

负责记录监控器启动时的详细信息和配置状态
"""

from evm_network_monitor.config.monitor_config import MonitorConfig
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class StartupLogger:
    """启动信息记录器"""

    def __init__(self, config: MonitorConfig):
        self.config = config

    def log_startup_info(self) -> None:
        """记录启动信息"""
        logger.info("🚀 开始监控 EVM 网络健康状态")

        self._log_basic_config()
        self._log_health_config()
        self._log_indexer_config()

    def _log_basic_config(self) -> None:
        logger.info(f"🔗 RPC URL: {self.config.rpc_url}")
        logger.info(f"⛓️ 链: {self.config.chain_name} (链ID: {self.config.chain_id or '未校验'})")
        logger.info(f"⏱️ 区块时间: {self.config.block_time} 秒")

    def _log_health_config(self) -> None:
        logger.info(
            f"📊 指标窗口: {self.config.block_window_size} 个区块 | "
            f"健康阈值: slow>{self.config.slow_threshold}s, stalled>{self.config.stalled_threshold}s"
        )
        logger.info(
            f"📶 延迟探测: 每 {self.config.latency_probe_interval}s "
            f"(超时 {self.config.probe_timeout}s)"
        )

    def _log_indexer_config(self) -> None:
        account = self.config.tracked_account
        if not account:
            logger.info("👤 未设置跟踪账户，只监控网络状态")
            return
        logger.info(f"👤 跟踪账户: {account}")
        logger.info(
            f"🔍 索引范围: 最近 {self.config.index_scan_blocks} 个区块 | "
            f"确认查询: 最多 {self.config.confirmation_max_attempts} 次 | "
            f"存储: {self.config.storage_backend}"
        )
        if self.config.api_enabled:
            logger.info(f"🌍 HTTP 接口: http://{self.config.api_host}:{self.config.api_port}")
