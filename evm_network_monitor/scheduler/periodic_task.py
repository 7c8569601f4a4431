"""
周期任务调度

基于 asyncio 的定时任务，所有任务绑定到同一个停止事件，
账户切换或关闭时统一取消
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """按固定间隔重复执行协程的任务"""

    def __init__(self, name: str, action: Callable[[], Awaitable[Any]], interval: float,
                 stop_event: Optional[asyncio.Event] = None, run_immediately: bool = True):
        if interval <= 0:
            raise ValueError(f"任务间隔必须为正数: {interval}")
        self.name = name
        self.action = action
        self.interval = interval
        self.run_immediately = run_immediately
        self.stop_event = stop_event or asyncio.Event()

        self.runs: int = 0
        self.errors: int = 0
        self._task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        """启动任务（重复调用返回同一个 asyncio.Task）"""
        if self._task is not None and not self._task.done():
            logger.warning(f"任务 {self.name} 已经在运行")
            return self._task
        self._task = asyncio.create_task(self._loop(), name=self.name)
        return self._task

    async def _wait_interval(self) -> bool:
        """等待一个间隔，停止事件被设置时返回 True"""
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False

    async def _loop(self) -> None:
        logger.debug(f"启动周期任务 {self.name}，间隔: {self.interval}s")

        if not self.run_immediately and await self._wait_interval():
            return

        while not self.stop_event.is_set():
            try:
                await self.action()
                self.runs += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.errors += 1
                logger.error(f"❌ 周期任务 {self.name} 执行出错: {e}", exc_info=True)

            if await self._wait_interval():
                break

        logger.debug(f"周期任务 {self.name} 已停止")

    async def stop(self, timeout: float = 5.0) -> None:
        """设置停止事件并等待任务结束，超时则取消"""
        self.stop_event.set()
        if self._task is None or self._task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_status(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'running': self.is_running(),
            'interval': self.interval,
            'runs': self.runs,
            'errors': self.errors,
        }
