"""
区块源

轮询区块高度，每个新区块只获取一次（含完整交易），通过事件通道分发
"""

from typing import List, Optional

from evm_network_monitor.core.events import BlockEventChannel, NewBlockEvent
from evm_network_monitor.exceptions import RpcError
from evm_network_monitor.managers.rpc_manager import RpcGateway
from evm_network_monitor.models.data_types import BlockSample
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class BlockFeed:
    """区块高度轮询与新区块分发"""

    def __init__(self, gateway: RpcGateway, channel: BlockEventChannel, max_gap: int = 20):
        self.gateway = gateway
        self.channel = channel
        self.max_gap = max_gap
        self.last_number: Optional[int] = None

        self.blocks_published: int = 0
        self.poll_errors: int = 0

    async def backfill(self, count: int) -> List[BlockSample]:
        """获取最近 count 个区块头（按区块号从新到旧逐个获取）

        中途失败时返回已获取的部分
        """
        try:
            height = await self.gateway.get_block_number()
        except RpcError as e:
            self.poll_errors += 1
            logger.warning(f"⚠️ 回填区块失败，无法获取区块高度: {e}")
            return []

        samples: List[BlockSample] = []
        for number in range(height, max(height - count, -1), -1):
            try:
                block = await self.gateway.get_block(number, False)
            except RpcError as e:
                self.poll_errors += 1
                logger.warning(f"⚠️ 回填区块 {number} 失败: {e}")
                break
            if block is None:
                break
            samples.append(BlockSample.from_rpc(block))

        if self.last_number is None or height > self.last_number:
            self.last_number = height
        logger.info(f"📦 回填 {len(samples)} 个区块，最新区块 {height}")
        return samples

    async def poll_once(self) -> int:
        """检查区块高度，获取并发布新区块；返回发布数量"""
        try:
            height = await self.gateway.get_block_number()
        except RpcError as e:
            self.poll_errors += 1
            logger.warning(f"⚠️ 获取区块高度失败: {e}")
            return 0

        if self.last_number is not None and height <= self.last_number:
            return 0

        start = height if self.last_number is None else self.last_number + 1
        start = max(start, height - self.max_gap + 1)
        if self.last_number is not None and start > self.last_number + 1:
            logger.warning(f"⚠️ 区块间隔过大，跳过 {self.last_number + 1} - {start - 1}")

        published = 0
        for number in range(start, height + 1):
            try:
                block = await self.gateway.get_block(number, True)
            except RpcError as e:
                self.poll_errors += 1
                logger.warning(f"⚠️ 获取区块 {number} 失败: {e}")
                break
            if block is None:
                logger.debug(f"区块 {number} 暂不可用")
                break

            sample = BlockSample.from_rpc(block)
            self.channel.publish(NewBlockEvent(sample=sample, block=block))
            self.last_number = sample.number
            self.blocks_published += 1
            published += 1

        if published:
            logger.debug(f"🧱 发布 {published} 个新区块，最新 {self.last_number}")
        return published
