"""
监控配置管理模块

统一管理所有监控相关的配置参数，便于维护和调整
包括：链连接参数、区块窗口/健康阈值、交易索引与确认策略、存储和接口配置
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from evm_network_monitor.config.base_config import (
    ActiveConfig, ApiConfig, ConfigMap, MonitorSettings, StorageConfig
)


def _setting(key: str, default: Any) -> Any:
    """读取 monitor 配置段中的参数"""
    return MonitorSettings.get(key, default)


@dataclass
class MonitorConfig:
    """监控配置类 - 集中管理所有配置参数"""

    # 基础连接配置
    chain_name: str = ActiveConfig.get("chain_name", "local")
    rpc_url: str = ActiveConfig.get("rpc_url", "http://localhost:8545")
    scan_url: str = ActiveConfig.get("scan_url", "")
    token_name: str = ActiveConfig.get("token_name", "ETH")
    chain_id: Optional[int] = ActiveConfig.get("chain_id")  # 为空时不校验链ID
    block_time: int = ActiveConfig.get("block_time", 2)  # 预期出块时间（秒）

    # 跟踪账户
    tracked_account: str = _setting("tracked_account", "")

    # 区块窗口与健康评估
    block_window_size: int = _setting("block_window_size", 20)
    block_poll_interval: float = _setting("block_poll_interval", 1.0)
    health_tick_interval: float = _setting("health_tick_interval", 3.0)
    latency_probe_interval: float = _setting("latency_probe_interval", 10.0)
    slow_threshold: float = _setting("slow_threshold", 6.0)
    stalled_threshold: float = _setting("stalled_threshold", 10.0)

    # RPC 超时
    rpc_timeout: float = _setting("rpc_timeout", 30.0)
    probe_timeout: float = _setting("probe_timeout", 5.0)
    cache_ttl: float = _setting("cache_ttl", 1.5)  # 区块高度缓存时间

    # 交易索引与确认
    index_scan_blocks: int = _setting("index_scan_blocks", 100)
    confirmation_max_attempts: int = _setting("confirmation_max_attempts", 5)
    confirmation_base_delay: float = _setting("confirmation_base_delay", 1.0)
    cache_max_records: int = _setting("cache_max_records", 100)
    cache_max_age: float = _setting("cache_max_age", 3600.0)  # 交易缓存过期时间，0 表示不过期

    # 存储配置
    storage_backend: str = StorageConfig.get("backend", "memory")
    storage_path: str = StorageConfig.get("path", "evm_network_monitor.db")
    storage_key_prefix: str = StorageConfig.get("key_prefix", "evm_user_txs_")

    # HTTP 接口配置
    api_enabled: bool = ApiConfig.get("enabled", False)
    api_host: str = ApiConfig.get("host", "127.0.0.1")
    api_port: int = ApiConfig.get("port", 8080)

    # 日志配置
    stats_log_interval: int = _setting("stats_log_interval", 300)  # 统计日志间隔（秒）

    def __post_init__(self):
        """初始化后校验参数"""
        for name in ('block_window_size', 'index_scan_blocks', 'confirmation_max_attempts',
                     'cache_max_records'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} 必须为正数，当前值: {getattr(self, name)}")

        for name in ('block_poll_interval', 'health_tick_interval', 'latency_probe_interval',
                     'rpc_timeout', 'probe_timeout'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} 必须为正数，当前值: {getattr(self, name)}")

        if self.cache_max_age < 0:
            raise ValueError(f"cache_max_age 不能为负数: {self.cache_max_age}")

        if self.confirmation_base_delay < 0:
            raise ValueError(f"confirmation_base_delay 不能为负数: {self.confirmation_base_delay}")

        if not 0 < self.slow_threshold < self.stalled_threshold:
            raise ValueError(
                f"健康阈值配置无效: slow={self.slow_threshold}, stalled={self.stalled_threshold}"
            )

        if self.storage_backend not in ('memory', 'file', 'sqlite'):
            raise ValueError(f"不支持的存储后端: {self.storage_backend}")

    def to_dict(self) -> Dict:
        """转换为字典格式，便于序列化"""
        return asdict(self)

    def get_description(self) -> str:
        """获取当前监控配置的描述"""
        account = self.tracked_account or "未设置"
        return (f"{self.chain_name} | 窗口 {self.block_window_size} 区块 | "
                f"索引 {self.index_scan_blocks} 区块 | 账户 {account}")

    @classmethod
    def from_chain_name(cls, chain_name: str, **overrides) -> 'MonitorConfig':
        """通过链名称创建监控配置实例

        Args:
            chain_name: 链名称，如 'local', 'bsc', 'ethereum' 等
            **overrides: 覆盖的配置项

        Returns:
            MonitorConfig: 配置实例

        Raises:
            ValueError: 当指定的链名称不存在时
        """
        if chain_name not in ConfigMap:
            available_chains = list(ConfigMap.keys())
            raise ValueError(f"链 '{chain_name}' 不存在。可用的链: {available_chains}")

        chain_config = ConfigMap[chain_name]
        params = {
            'chain_name': chain_name,
            'rpc_url': chain_config.get("rpc_url", ""),
            'scan_url': chain_config.get("scan_url", ""),
            'token_name': chain_config.get("token_name", "ETH"),
            'chain_id': chain_config.get("chain_id"),
            'block_time': chain_config.get("block_time", 2),
        }

        # 读取调用时的 monitor / storage / api 配置段（支持 --config 重新加载）
        for key in ('tracked_account', 'block_window_size', 'block_poll_interval',
                    'health_tick_interval', 'latency_probe_interval', 'slow_threshold',
                    'stalled_threshold', 'rpc_timeout', 'probe_timeout', 'cache_ttl',
                    'index_scan_blocks', 'confirmation_max_attempts',
                    'confirmation_base_delay', 'cache_max_records', 'cache_max_age',
                    'stats_log_interval'):
            if key in MonitorSettings:
                params[key] = MonitorSettings[key]
        for key, field_name in (('backend', 'storage_backend'), ('path', 'storage_path'),
                                ('key_prefix', 'storage_key_prefix')):
            if key in StorageConfig:
                params[field_name] = StorageConfig[key]
        for key, field_name in (('enabled', 'api_enabled'), ('host', 'api_host'),
                                ('port', 'api_port')):
            if key in ApiConfig:
                params[field_name] = ApiConfig[key]

        params.update(overrides)
        return cls(**params)

    @staticmethod
    def get_available_chains() -> list:
        """获取所有可用的链名称"""
        return list(ConfigMap.keys())

    @staticmethod
    def get_chain_config(chain_name: str) -> Dict:
        """获取指定链的完整配置信息

        Raises:
            ValueError: 当指定的链名称不存在时
        """
        if chain_name not in ConfigMap:
            available_chains = list(ConfigMap.keys())
            raise ValueError(f"链 '{chain_name}' 不存在。可用的链: {available_chains}")

        return ConfigMap[chain_name].copy()
