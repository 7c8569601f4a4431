"""
异常定义

传输类错误和存储类错误在组件边界内被捕获并降级处理，
只有账户格式错误、链ID不匹配等非预期情况才会抛给调用方
"""

from typing import Optional


class MonitorError(Exception):
    """监控器异常基类"""
    pass


class RpcError(MonitorError):
    """JSON-RPC 调用失败

    Attributes:
        method: RPC 方法名
        code: JSON-RPC 错误码（传输错误时为 None）
        is_transport: True 表示超时/连接/HTTP 状态错误，False 表示节点返回的应用错误
    """

    def __init__(self, message: str, method: str = "", code: Optional[int] = None,
                 is_transport: bool = False):
        super().__init__(message)
        self.method = method
        self.code = code
        self.is_transport = is_transport

    def __str__(self) -> str:
        prefix = f"[{self.method}] " if self.method else ""
        suffix = f" (code {self.code})" if self.code is not None else ""
        return f"{prefix}{super().__str__()}{suffix}"


class StorageError(MonitorError):
    """持久化存储读写失败"""
    pass


class StorageQuotaExceeded(StorageError):
    """存储空间配额已满"""
    pass


class InvalidAccountError(MonitorError, ValueError):
    """账户地址格式错误"""
    pass


class ChainMismatchError(MonitorError):
    """节点返回的链ID与配置不一致"""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"链ID不匹配: 配置为 {expected}，节点返回 {actual}")
        self.expected = expected
        self.actual = actual
