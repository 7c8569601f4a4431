"""
区块窗口

按区块号从新到旧保存最近 N 个区块样本，用于计算网络指标
"""

from typing import Iterable, List, Optional

from evm_network_monitor.models.data_types import BlockSample


class BlockWindow:
    """最近区块的有界窗口（最新在前，区块号不重复）"""

    def __init__(self, capacity: int = 20):
        if capacity <= 0:
            raise ValueError(f"窗口容量必须为正数: {capacity}")
        self.capacity = capacity
        self._samples: List[BlockSample] = []

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def samples(self) -> List[BlockSample]:
        """样本副本，最新在前"""
        return list(self._samples)

    @property
    def latest_number(self) -> Optional[int]:
        return self._samples[0].number if self._samples else None

    def ingest(self, sample: BlockSample) -> bool:
        """插入一个新区块

        区块号不大于当前最新区块时忽略（返回 False）
        """
        latest = self.latest_number
        if latest is not None and sample.number <= latest:
            return False
        self._samples.insert(0, sample)
        del self._samples[self.capacity:]
        return True

    def backfill(self, samples: Iterable[BlockSample]) -> int:
        """启动时回填历史区块，可以是任意顺序；返回实际新增数量"""
        known = {s.number for s in self._samples}
        added = 0
        for sample in samples:
            if sample.number in known:
                continue
            known.add(sample.number)
            self._samples.append(sample)
            added += 1
        self._samples.sort(key=lambda s: s.number, reverse=True)
        del self._samples[self.capacity:]
        return added

    def clear(self) -> None:
        self._samples.clear()
