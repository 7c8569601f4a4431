"""
统计报告器

负责运行统计和日志输出：网络指标、健康状态、RPC 调用和交易索引情况
"""

import time
from typing import Any, Dict, List, Optional

from evm_network_monitor.config.monitor_config import MonitorConfig
from evm_network_monitor.managers.rpc_manager import RpcGateway
from evm_network_monitor.models.data_types import (
    HealthState, MonitorStatus, NetworkMetrics, PerformanceMetrics, ProductionRate
)
from evm_network_monitor.utils.log_utils import epoch_to_localhost, extended_seconds_to_hms, get_logger

logger = get_logger(__name__)


class StatisticsReporter:
    """统计报告器 - 负责性能统计和日志输出"""

    def __init__(self, config: MonitorConfig):
        self.config = config
        self.blocks_processed: int = 0
        self.start_time: float = time.time()
        self.last_stats_log: float = time.time()
        self.peak_tps: float = 0.0
        self.peak_latency_ms: int = 0
        self.unhealthy_ticks: int = 0

        # 区块处理时间统计（最近50次）
        self.processing_times: List[float] = []
        self.max_processing_time: float = 0.0

    def record_block_processed(self, processing_time: Optional[float] = None) -> None:
        """增加已处理区块数，并记录处理耗时"""
        self.blocks_processed += 1
        if processing_time is None:
            return
        self.max_processing_time = max(self.max_processing_time, processing_time)
        self.processing_times.append(processing_time)
        if len(self.processing_times) > 50:
            self.processing_times.pop(0)

    def observe(self, metrics: NetworkMetrics, health: HealthState) -> None:
        """记录峰值与不健康次数（每次健康评估调用）"""
        self.peak_tps = max(self.peak_tps, metrics.tps)
        self.peak_latency_ms = max(self.peak_latency_ms, health.rpc_latency_ms)
        if not health.is_healthy:
            self.unhealthy_ticks += 1

    def should_log_stats(self) -> bool:
        """检查是否应该输出统计日志"""
        return time.time() - self.last_stats_log >= self.config.stats_log_interval

    def log_performance_stats(self, gateway: RpcGateway, metrics: NetworkMetrics,
                              health: HealthState,
                              indexer_stats: Optional[Dict[str, Any]] = None,
                              tracker_stats: Optional[Dict[str, int]] = None) -> None:
        """输出周期性统计"""
        runtime = time.time() - self.start_time

        logger.info(
            f"📊 运行统计 | "
            f"运行: {extended_seconds_to_hms(runtime)} | "
            f"区块: {self.blocks_processed} | "
            f"TPS: {metrics.tps:.2f} | "
            f"出块: {metrics.avg_block_time:.2f}s | "
            f"Gas使用率: {metrics.gas_utilization:.2f}%"
        )
        self._log_health(health)
        self._log_rpc_stats(gateway.get_performance_stats())
        self._log_indexer_stats(indexer_stats, tracker_stats)

        self.last_stats_log = time.time()

    def _log_health(self, health: HealthState) -> None:
        icon = {
            ProductionRate.NORMAL: "💚",
            ProductionRate.SLOW: "🟡",
            ProductionRate.STALLED: "🔴",
        }[health.production_rate]
        logger.info(
            f"{icon} 健康状态 | 出块: {health.production_rate.value} | "
            f"距上个区块: {health.seconds_since_last_block:.1f}s | "
            f"RPC延迟: {health.rpc_latency_ms}ms"
        )

    def _log_rpc_stats(self, rpc_stats: PerformanceMetrics) -> None:
        rpc_breakdown = " | ".join([
            f"{k}: {v}" for k, v in rpc_stats.rpc_calls_by_type.items() if v > 0
        ])
        logger.info(
            f"🔗 RPC统计 | "
            f"总计: {rpc_stats.rpc_calls} | "
            f"失败: {rpc_stats.rpc_errors} | "
            f"速率: {rpc_stats.avg_rpc_per_second:.2f}/s | "
            f"缓存命中率: {rpc_stats.cache_hit_rate:.1f}%"
        )
        if rpc_breakdown:
            logger.info(f"📈 RPC分类 | {rpc_breakdown}")

    def _log_indexer_stats(self, indexer_stats: Optional[Dict[str, Any]],
                           tracker_stats: Optional[Dict[str, int]]) -> None:
        if not indexer_stats:
            return
        logger.info(
            f"💰 交易索引 | 账户: {indexer_stats['account']} | "
            f"记录: {indexer_stats['records']} | 待确认: {indexer_stats['pending']}"
        )
        if tracker_stats:
            logger.info(
                f"⏳ 确认统计 | 跟踪中: {tracker_stats.get('active', 0)} | "
                f"成功: {tracker_stats.get('success', 0)} | "
                f"失败: {tracker_stats.get('failed', 0)} | "
                f"未打包: {tracker_stats.get('not_mined', 0)} | "
                f"查不到: {tracker_stats.get('not_found', 0)}"
            )

    def log_final_stats(self, gateway: RpcGateway, metrics: NetworkMetrics, health: HealthState,
                        indexer_stats: Optional[Dict[str, Any]] = None,
                        tracker_stats: Optional[Dict[str, int]] = None) -> None:
        """输出最终统计报告"""
        runtime = time.time() - self.start_time
        rpc_stats = gateway.get_performance_stats()

        logger.info("=" * 80)
        logger.info("📈 最终运行统计报告")
        logger.info(f"🕒 启动时间: {epoch_to_localhost(self.start_time)} | "
                    f"运行时长: {extended_seconds_to_hms(runtime)}")
        logger.info(f"📦 处理区块: {self.blocks_processed} 个")
        logger.info(f"📊 最终指标: TPS {metrics.tps:.2f} | 出块 {metrics.avg_block_time:.2f}s | "
                    f"Gas使用率 {metrics.gas_utilization:.2f}%")
        self._log_health(health)

        logger.info(f"🔗 RPC调用: {rpc_stats.rpc_calls} 次（失败 {rpc_stats.rpc_errors} 次）")
        for call_type, count in rpc_stats.rpc_calls_by_type.items():
            if count > 0:
                percentage = (count / rpc_stats.rpc_calls) * 100
                logger.info(f"   {call_type}: {count} 次 ({percentage:.1f}%)")

        self._log_indexer_stats(indexer_stats, tracker_stats)

        logger.info("🎯 峰值统计:")
        logger.info(f"   最高TPS: {self.peak_tps:.2f}")
        logger.info(f"   最高RPC延迟: {self.peak_latency_ms}ms")
        logger.info(f"   不健康评估次数: {self.unhealthy_ticks}")
        if self.processing_times:
            avg = sum(self.processing_times) / len(self.processing_times)
            logger.info(f"⏱️ 区块处理耗时: 平均 {avg:.3f}s | 最慢 {self.max_processing_time:.3f}s")
        logger.info("=" * 80)

    def get_monitor_status(self, current_block: int, is_running: bool, tracked_account: str = "",
                           pending: int = 0, indexed: int = 0) -> MonitorStatus:
        """获取当前监控状态"""
        status = MonitorStatus(
            is_running=is_running,
            tracked_account=tracked_account,
            blocks_processed=self.blocks_processed,
            pending_transactions=pending,
            indexed_transactions=indexed,
            start_time=self.start_time,
            current_block=current_block,
        )
        status.update_runtime(time.time())
        return status

    def reset_stats(self) -> None:
        """重置统计数据"""
        self.blocks_processed = 0
        self.start_time = time.time()
        self.last_stats_log = time.time()
        self.peak_tps = 0.0
        self.peak_latency_ms = 0
        self.unhealthy_ticks = 0
        self.processing_times.clear()
        self.max_processing_time = 0.0
        logger.info("统计报告器数据已重置")
