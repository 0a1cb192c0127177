"""TimeTracker -- 单计时器工时统计

同一时刻至多一个计时器。start 新任务前总是先停止旧计时器并提交其耗时，
因此不会出现两个并存的计时器。计时器状态由实例持有，测试可各自创建独立实例。
"""

import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from numbers import Real

import structlog

from planwise.core.config import MAX_MANUAL_ENTRY_MINUTES
from planwise.core.exceptions import (
    InvalidIdError,
    InvalidTimeEntryError,
    NoActiveTimerError,
    TaskNotFoundError,
    TimerMismatchError,
)
from planwise.core.models import Task, TaskStatus

from .task_service import TaskService

log = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class ActiveTimer:
    """正在运行的计时器"""

    task_id: str
    started_at: datetime


def elapsed_minutes_between(started_at: datetime, ended_at: datetime) -> int:
    """经过的分钟数，按秒向上取整到整分钟"""
    seconds = max((ended_at - started_at).total_seconds(), 0.0)
    return math.ceil(seconds / 60)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class TimeTracker:
    """工时统计服务"""

    def __init__(
        self,
        task_service: TaskService,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._tasks = task_service
        self._clock = clock or (lambda: datetime.now(UTC))
        self._active: ActiveTimer | None = None

    @property
    def active_timer(self) -> ActiveTimer | None:
        """当前计时器；没有时为 None"""
        return self._active

    async def start(self, task_id: str) -> ActiveTimer:
        """为任务启动计时器

        - 任务必须存在且未软删除
        - 同一任务已在计时：直接返回现有计时器
        - 其他任务在计时：先停止并提交其耗时
        - pending 任务提升为 in-progress

        Raises:
            TaskNotFoundError: 任务不存在或已软删除
        """
        task = await self._require_task(task_id)

        if self._active is not None and self._active.task_id == task_id:
            return self._active

        if self._active is not None:
            previous = self._active.task_id
            try:
                await self.stop(previous)
            except TaskNotFoundError:
                # 旧任务已被删除，耗时无处提交
                log.warning("stale_timer_dropped", task_id=previous)
                self._active = None

        self._active = ActiveTimer(task_id=task_id, started_at=self._clock())
        log.info("timer_started", task_id=task_id)

        if task.status == TaskStatus.PENDING:
            await self._tasks.update(task_id, {"status": TaskStatus.IN_PROGRESS})
        return self._active

    async def stop(self, task_id: str) -> Task:
        """停止计时器并把经过的分钟数（向上取整）累加到 time_spent

        Raises:
            NoActiveTimerError: 没有正在运行的计时器
            TimerMismatchError: 计时器属于其他任务
            TaskNotFoundError: 任务不存在或已删除，计时器保持不变
        """
        if not isinstance(task_id, str) or not task_id:
            raise InvalidIdError()
        timer = self._active
        if timer is None:
            raise NoActiveTimerError()
        if timer.task_id != task_id:
            raise TimerMismatchError(timer.task_id, task_id)

        minutes = elapsed_minutes_between(timer.started_at, self._clock())
        # 累加失败（任务已删除等）时保留计时器
        task = await self._tasks.add_time_spent(task_id, minutes)
        self._active = None
        log.info("timer_stopped", task_id=task_id, minutes=minutes)
        return task

    def elapsed_minutes(self, task_id: str) -> int:
        """不停止计时器，查看已经过的分钟数"""
        timer = self._active
        if timer is None:
            raise NoActiveTimerError()
        if timer.task_id != task_id:
            raise TimerMismatchError(timer.task_id, task_id)
        return elapsed_minutes_between(timer.started_at, self._clock())

    async def add_manual_entry(self, task_id: str, minutes: float) -> Task:
        """手动录入工时

        minutes 必须是正的有限数且不超过一天（含 1440），四舍五入（.5 向上）后累加。

        Raises:
            InvalidTimeEntryError: minutes 非法
            TaskNotFoundError: 任务不存在或已软删除
        """
        if isinstance(minutes, bool) or not isinstance(minutes, Real):
            raise InvalidTimeEntryError("工时必须是数字")
        if not math.isfinite(minutes):
            raise InvalidTimeEntryError("工时必须是有限数")
        if minutes <= 0:
            raise InvalidTimeEntryError("工时必须大于 0")
        if minutes > MAX_MANUAL_ENTRY_MINUTES:
            raise InvalidTimeEntryError(
                f"单次工时不能超过 {MAX_MANUAL_ENTRY_MINUTES} 分钟"
            )

        await self._require_task(task_id)
        rounded = round_half_up(float(minutes))
        log.info("manual_time_entry_added", task_id=task_id, minutes=rounded)
        return await self._tasks.add_time_spent(task_id, rounded)

    async def _require_task(self, task_id: str) -> Task:
        task = await self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task
