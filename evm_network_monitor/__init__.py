"""EVM 网络健康监控 & 账户交易索引"""

__version__ = "0.2.0"
