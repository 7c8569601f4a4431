import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from time import strftime, localtime

from evm_network_monitor.config.base_config import LoggingConfig

FMT = logging.Formatter("%(asctime)s %(levelname)s %(filename)s:%(lineno)s %(message)s")


def extended_seconds_to_hms(seconds) -> str:
    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    if days > 0:
        return f"{int(days):d}:{int(hours):02d}:{int(minutes):02d}:{int(seconds):02d}"
    else:
        return f"{int(hours):02d}:{int(minutes):02d}:{int(seconds):02d}"


def epoch_to_localhost(epoch_time: float) -> str:
    return strftime('%Y-%m-%d %H:%M:%S', localtime(epoch_time))


def _configured_level() -> int:
    level_name = str(LoggingConfig.get('level', 'INFO')).upper()
    return getattr(logging, level_name, logging.INFO)


def get_logger(logger_name: str, log_file: str = None) -> logging.Logger:
    logger = logging.getLogger(logger_name)

    # 检查logger是否已经有处理器，如果有，直接返回
    if logger.handlers:
        return logger

    log_file = log_file if log_file is not None else LoggingConfig.get('file') or ""

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(FMT)
    # File handler (if log_file is provided)
    if log_file:
        # Ensure the directory exists
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)

        # Create a RotatingFileHandler
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(FMT)
        logger.addHandler(file_handler)

    logger.addHandler(console_handler)
    logger.setLevel(_configured_level())

    # 防止日志传播到根日志器
    logger.propagate = False

    return logger


def set_log_level(level_name: str) -> None:
    """统一调整本项目所有日志器的级别（命令行 --log-level 使用）"""
    level = getattr(logging, level_name.upper(), logging.INFO)
    LoggingConfig['level'] = level_name.upper()
    for name, logger in logging.Logger.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and name.startswith('evm_network_monitor'):
            logger.setLevel(level)
