"""账户地址校验与日志展示用的格式化"""

from web3 import Web3

from evm_network_monitor.exceptions import InvalidAccountError


def normalize_account(account: str) -> str:
    """校验账户地址并返回小写形式

    Raises:
        InvalidAccountError: 地址格式错误
    """
    if not isinstance(account, str) or not Web3.is_address(account.strip()):
        raise InvalidAccountError(f"无效的账户地址: {account!r}")
    return account.strip().lower()


def short_address(address: str) -> str:
    """日志中使用的缩写地址"""
    if not address or len(address) < 12:
        return address or ""
    return f"{address[:6]}...{address[-4:]}"
