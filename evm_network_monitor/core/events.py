"""
区块事件通道

一个区块只获取一次，通过每个订阅者独立的队列分发给窗口消费者和交易索引器
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List

from evm_network_monitor.models.data_types import BlockSample


@dataclass(frozen=True)
class NewBlockEvent:
    """新区块事件，block 为包含完整交易的原始区块数据"""
    sample: BlockSample
    block: Dict[str, Any]

    @property
    def number(self) -> int:
        return self.sample.number


class BlockEventChannel:
    """多订阅者的区块事件通道"""

    def __init__(self):
        self._subscribers: List[asyncio.Queue] = []
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        """注册订阅者，返回其专属队列；通道关闭后队列会收到 None"""
        queue: asyncio.Queue = asyncio.Queue()
        if self._closed:
            queue.put_nowait(None)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: NewBlockEvent) -> int:
        """把事件放入所有订阅者队列，返回订阅者数量"""
        if self._closed:
            return 0
        for queue in self._subscribers:
            queue.put_nowait(event)
        return len(self._subscribers)

    def close(self) -> None:
        """关闭通道，通知所有订阅者退出"""
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(None)

