#!/usr/bin/env python3
"""
EVM 网络健康监控器

程序入口点，解析命令行参数并启动监控器
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from evm_network_monitor.config import base_config
from evm_network_monitor.config.monitor_config import MonitorConfig
from evm_network_monitor.core.network_monitor import NetworkMonitor, setup_signal_handlers
from evm_network_monitor.exceptions import ChainMismatchError, InvalidAccountError
from evm_network_monitor.services.api_server import MonitorApiServer
from evm_network_monitor.utils.log_utils import get_logger, set_log_level

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='evm-network-monitor',
        description='EVM 网络健康监控 & 账户交易索引',
    )
    parser.add_argument('chain', nargs='?', default=None,
                        help='链名称（config.yml 中 chains 下的键），默认使用 active_chain')
    parser.add_argument('--account', help='跟踪的账户地址')
    parser.add_argument('--config', help='配置文件路径（默认读取 EVM_MONITOR_CONFIG 或包内 config.yml）')
    parser.add_argument('--api', action='store_true', help='启动 HTTP 状态接口')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='日志级别')
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> MonitorConfig:
    """根据命令行参数构建配置

    Raises:
        ValueError: 链名称不存在或参数无效
    """
    if args.config:
        base_config.reload_config(args.config)
    if args.log_level:
        set_log_level(args.log_level)

    chain_name = args.chain or base_config.ActiveChainName
    overrides = {}
    if args.account:
        overrides['tracked_account'] = args.account
    if args.api:
        overrides['api_enabled'] = True
    return MonitorConfig.from_chain_name(chain_name, **overrides)


async def main(argv: Optional[List[str]] = None) -> int:
    """主函数 - 启动网络监控器"""
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ValueError as e:
        logger.error(f"配置错误: {e}")
        return 2

    monitor = NetworkMonitor(config)
    api_server = None
    setup_signal_handlers(monitor)

    try:
        if config.api_enabled:
            api_server = MonitorApiServer(monitor, config.api_host, config.api_port)
            await api_server.start()
        await monitor.run_forever()
    except (ChainMismatchError, InvalidAccountError) as e:
        logger.error(f"❌ 监控器启动失败: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("接收到键盘中断")
    except Exception as e:
        logger.error(f"监控器运行失败: {e}", exc_info=True)
        return 1
    finally:
        if api_server is not None:
            await api_server.stop()
        await monitor.graceful_shutdown()

    return 0


def run() -> None:
    """命令行入口"""
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    run()
