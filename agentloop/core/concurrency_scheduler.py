"""
Concurrency Scheduler

工具批次的并发调度器。

核心功能：
- 并发限制控制（默认 10）
- 顺序 / 并发两种批次执行方式
- 每个任务启动前检查中断信号，中断后不再启动新任务
- 结果按提交顺序返回
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from ..constants import MAX_CONCURRENT_TOOLS
from ..signals import AbortSignal

logger = logging.getLogger(__name__)

T = TypeVar('T')


class TaskStatus(str, Enum):
    """任务状态"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ScheduledTask(Generic[T]):
    """
    调度任务

    封装单个待执行任务的所有信息
    """

    # 任务 ID
    task_id: str

    # 任务函数（无参协程工厂）
    func: Callable[[], Awaitable[T]]

    # 任务状态
    status: TaskStatus = TaskStatus.PENDING

    # 开始时间
    started_at: Optional[datetime] = None

    # 完成时间
    completed_at: Optional[datetime] = None

    # 执行结果
    result: Optional[T] = None

    # 失败原因
    error: Optional[BaseException] = None

    # 元数据
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get_execution_time(self) -> Optional[float]:
        """
        获取执行时间（秒）

        Returns:
            执行时间，如果未完成则返回 None
        """
        if self.started_at is None or self.completed_at is None:
            return None

        return (self.completed_at - self.started_at).total_seconds()


class ConcurrencyScheduler:
    """
    并发调度器

    每个 Agent 持有自己的实例，不共享全局线程池或信号量
    """

    def __init__(self, max_concurrent: int = MAX_CONCURRENT_TOOLS):
        """
        初始化并发调度器

        Args:
            max_concurrent: 最大并发数
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")

        self.max_concurrent = max_concurrent

        # 信号量控制并发数（延迟初始化，需在事件循环内创建）
        self._semaphore: Optional[asyncio.Semaphore] = None

        # 运行中的任务数
        self._running = 0

        # 统计信息
        self._stats = {
            "scheduled": 0,
            "completed": 0,
            "failed": 0,
            "cancelled": 0,
        }

    def _ensure_semaphore_initialized(self) -> asyncio.Semaphore:
        """确保信号量已初始化"""
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        return self._semaphore

    async def execute_task(
        self,
        task: ScheduledTask[T],
        abort_signal: Optional[AbortSignal] = None,
    ) -> ScheduledTask[T]:
        """
        执行单个任务（受并发限制）

        任务抛出的异常记录在 task.error 中，不会向上抛出。
        取得执行槽位后若中断信号已触发，任务被标记为 CANCELLED 且不会启动。

        Args:
            task: 调度任务
            abort_signal: 中断信号

        Returns:
            同一个任务对象
        """
        semaphore = self._ensure_semaphore_initialized()

        async with semaphore:
            if abort_signal is not None and abort_signal.is_aborted:
                task.status = TaskStatus.CANCELLED
                self._stats["cancelled"] += 1
                logger.debug(f"任务未启动（已中断）：{task.task_id}")
                return task

            task.status = TaskStatus.RUNNING
            task.started_at = datetime.now()
            self._running += 1

            logger.debug(
                f"任务开始执行：{task.task_id} "
                f"(running={self._running}/{self.max_concurrent})"
            )

            try:
                task.result = await task.func()
                task.status = TaskStatus.COMPLETED
                self._stats["completed"] += 1

            except Exception as e:
                task.error = e
                task.status = TaskStatus.FAILED
                self._stats["failed"] += 1
                logger.debug(f"任务执行失败：{task.task_id} - {e}")

            finally:
                task.completed_at = datetime.now()
                self._running -= 1

        return task

    async def execute_batch(
        self,
        tasks: Sequence[ScheduledTask[T]],
        concurrent: bool = True,
        abort_signal: Optional[AbortSignal] = None,
    ) -> List[ScheduledTask[T]]:
        """
        批量执行任务

        Args:
            tasks: 任务列表
            concurrent: True 时并发执行（受信号量限制），否则严格按顺序执行
            abort_signal: 中断信号；触发后尚未启动的任务不再启动

        Returns:
            与提交顺序一致的任务列表
        """
        self._stats["scheduled"] += len(tasks)

        logger.info(
            f"批量执行 {len(tasks)} 个任务（{'并发' if concurrent else '顺序'}）..."
        )

        if concurrent:
            await asyncio.gather(
                *[self.execute_task(task, abort_signal) for task in tasks]
            )
        else:
            for task in tasks:
                await self.execute_task(task, abort_signal)

        return list(tasks)

    def get_stats(self) -> Dict[str, Any]:
        """
        获取调度器统计信息

        Returns:
            统计数据字典
        """
        return {
            **self._stats,
            "max_concurrent": self.max_concurrent,
            "running": self._running,
        }

    def __repr__(self) -> str:
        stats = self.get_stats()
        return (
            f"ConcurrencyScheduler("
            f"max={self.max_concurrent}, "
            f"running={stats['running']}, "
            f"completed={stats['completed']})"
        )
