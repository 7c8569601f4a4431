"""
账户交易持久化缓存

按账户（小写地址）命名空间保存 {"timestamp": 保存时间, "data": [交易记录...]}
超过 max_age 秒的缓存视为过期，load 时忽略；旧格式（纯数组）没有保存时间，不会过期
任何存储失败都只记录日志，load 返回 None、save 返回 False，调用方继续使用内存数据
"""

import json
import time
from typing import Callable, List, Optional

from evm_network_monitor.exceptions import StorageError
from evm_network_monitor.models.data_types import TransactionRecord
from evm_network_monitor.models.transaction_adapter import record_from_storage, record_to_storage
from evm_network_monitor.storage.stores import KeyValueStore
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)

DEFAULT_KEY_PREFIX = "evm_user_txs_"


class PersistentCache:
    """账户交易缓存"""

    def __init__(self, store: Optional[KeyValueStore], key_prefix: str = DEFAULT_KEY_PREFIX,
                 max_records: int = 100, max_age: float = 0,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.key_prefix = key_prefix
        self.max_records = max_records
        self.max_age = max_age  # 0 表示不过期
        self._clock = clock

        self.stats = {
            'loads': 0,
            'saves': 0,
            'load_failures': 0,
            'save_failures': 0,
            'expired': 0,
        }

    def key_for(self, account: str) -> str:
        return f"{self.key_prefix}{account.lower()}"

    def load(self, account: str) -> Optional[List[TransactionRecord]]:
        """读取账户的缓存记录，不存在或读取失败返回 None"""
        if self.store is None:
            return None

        key = self.key_for(account)
        try:
            raw = self.store.get(key)
            if raw is None:
                return None
            data = json.loads(raw)
            saved_at = None
            if isinstance(data, dict):
                saved_at = data.get('timestamp')
                data = data.get('data')
            if not isinstance(data, list):
                raise ValueError(f"缓存内容不是数组: {type(data).__name__}")
            if self._is_expired(saved_at):
                self.stats['expired'] += 1
                logger.info(f"⌛ 交易缓存已过期 {key}，忽略")
                return None
            records = [record_from_storage(item) for item in data]
        except (StorageError, ValueError, KeyError, TypeError) as e:
            self.stats['load_failures'] += 1
            logger.warning(f"⚠️ 读取交易缓存失败 {key}: {e}")
            return None

        self.stats['loads'] += 1
        logger.debug(f"读取交易缓存 {key}: {len(records)} 条")
        return records

    def save(self, account: str, records: List[TransactionRecord]) -> bool:
        """保存账户记录（截断到 max_records），成功返回 True"""
        if self.store is None:
            return False

        key = self.key_for(account)
        try:
            payload = json.dumps({
                'timestamp': self._clock(),
                'data': [record_to_storage(r) for r in records[:self.max_records]],
            })
            self.store.set(key, payload)
        except (StorageError, ValueError, TypeError) as e:
            self.stats['save_failures'] += 1
            logger.warning(f"⚠️ 保存交易缓存失败 {key}: {e}，继续使用内存数据")
            return False

        self.stats['saves'] += 1
        return True

    def _is_expired(self, saved_at) -> bool:
        if not self.max_age or saved_at is None:
            return False
        return self._clock() - float(saved_at) > self.max_age

    def clear(self, account: str) -> bool:
        """删除账户缓存"""
        if self.store is None:
            return False

        key = self.key_for(account)
        try:
            self.store.delete(key)
        except StorageError as e:
            logger.warning(f"⚠️ 删除交易缓存失败 {key}: {e}")
            return False
        logger.info(f"🗑️ 已清除交易缓存 {key}")
        return True
