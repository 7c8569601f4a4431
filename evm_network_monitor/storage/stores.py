"""
键值存储后端

所有后端共享同一套接口：get / set / delete / keys
失败时抛出 StorageError（配额满时为 StorageQuotaExceeded），由上层缓存捕获
"""

import os
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from evm_network_monitor.config.monitor_config import MonitorConfig
from evm_network_monitor.exceptions import StorageError, StorageQuotaExceeded
from evm_network_monitor.models.cache_model import Base, CacheEntry
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """字符串键值存储接口"""

    name = "abstract"

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """读取值，不存在时返回 None"""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """写入值"""

    @abstractmethod
    def delete(self, key: str) -> None:
        """删除值，不存在时忽略"""

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """列出以 prefix 开头的键"""

    def close(self) -> None:
        pass


class MemoryStore(KeyValueStore):
    """内存存储，可选字节配额（模拟浏览器存储的容量限制）"""

    name = "memory"

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}

    def _size_with(self, key: str, value: str) -> int:
        size = sum(len(k) + len(v) for k, v in self._data.items() if k != key)
        return size + len(key) + len(value)

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None and self._size_with(key, value) > self.quota_bytes:
            raise StorageQuotaExceeded(f"存储配额已满 ({self.quota_bytes} bytes)，无法写入 {key}")
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]


class JsonFileStore(KeyValueStore):
    """目录存储，每个键一个 JSON 文件"""

    name = "file"
    _UNSAFE = re.compile(r'[^A-Za-z0-9_.-]')

    def __init__(self, directory: str):
        self.directory = directory
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise StorageError(f"无法创建存储目录 {directory}: {e}") from e

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, self._UNSAFE.sub('_', key) + '.json')

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"读取 {path} 失败: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path + '.tmp'
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                f.write(value)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"写入 {path} 失败: {e}") from e

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"删除 {key} 失败: {e}") from e

    def keys(self, prefix: str = "") -> List[str]:
        names = [n[:-len('.json')] for n in os.listdir(self.directory) if n.endswith('.json')]
        return [n for n in names if n.startswith(prefix)]


class SqlAlchemyStore(KeyValueStore):
    """基于 SQLAlchemy 的数据库存储，默认 sqlite"""

    name = "sqlite"

    def __init__(self, url: str):
        self.url = url
        try:
            self.engine = create_engine(url, echo=False)
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"数据库初始化失败 ({url}): {e}") from e
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.debug(f"键值存储数据库已就绪: {url}")

    @classmethod
    def for_sqlite_path(cls, path: str) -> 'SqlAlchemyStore':
        if path in ('', ':memory:'):
            return cls('sqlite://')
        return cls(f"sqlite:///{path}")

    def get(self, key: str) -> Optional[str]:
        try:
            with self.session_factory() as session:
                entry = session.get(CacheEntry, key)
                return entry.payload if entry else None
        except SQLAlchemyError as e:
            raise StorageError(f"读取 {key} 失败: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            with self.session_factory() as session:
                entry = session.get(CacheEntry, key)
                if entry is None:
                    session.add(CacheEntry(key=key, payload=value))
                else:
                    entry.payload = value
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"写入 {key} 失败: {e}") from e

    def delete(self, key: str) -> None:
        try:
            with self.session_factory() as session:
                entry = session.get(CacheEntry, key)
                if entry is not None:
                    session.delete(entry)
                    session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"删除 {key} 失败: {e}") from e

    def keys(self, prefix: str = "") -> List[str]:
        try:
            with self.session_factory() as session:
                query = select(CacheEntry.key).where(
                    CacheEntry.key.startswith(prefix, autoescape=True)
                )
                rows = session.execute(query).scalars().all()
                return list(rows)
        except SQLAlchemyError as e:
            raise StorageError(f"列出键失败: {e}") from e

    def close(self) -> None:
        self.engine.dispose()


def create_store(config: MonitorConfig) -> KeyValueStore:
    """根据配置创建存储后端

    Raises:
        StorageError: 后端初始化失败
    """
    backend = config.storage_backend
    if backend == 'memory':
        return MemoryStore()
    if backend == 'file':
        return JsonFileStore(config.storage_path)
    if backend == 'sqlite':
        return SqlAlchemyStore.for_sqlite_path(config.storage_path)
    raise StorageError(f"不支持的存储后端: {backend}")
