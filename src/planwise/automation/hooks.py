"""领域事件钩子

业务代码在对应操作完成后调用这些函数，把事件送进 TriggerManager。
manager 参数缺省时使用进程级单例。
"""

from typing import Any

from planwise.core.models import TriggerType

from .trigger_manager import TriggerManager, get_trigger_manager

EXERCISE_LOG_CREATED = "exercise.log.created"
EXERCISE_GOAL_ACHIEVED = "exercise.goal.achieved"
JOURNAL_ENTRY_CREATED = "journal.entry.created"
JOURNAL_ENTRY_UPDATED = "journal.entry.updated"


def _manager(manager: TriggerManager | None) -> TriggerManager:
    return manager if manager is not None else get_trigger_manager()


async def on_task_created(task: Any, manager: TriggerManager | None = None) -> None:
    await _manager(manager).emit_task_event(TriggerType.TASK_CREATED, task)


async def on_task_updated(
    task: Any,
    previous_task: Any = None,
    manager: TriggerManager | None = None,
) -> None:
    await _manager(manager).emit_task_event(TriggerType.TASK_UPDATED, task, previous_task)


async def on_task_completed(task: Any, manager: TriggerManager | None = None) -> None:
    await _manager(manager).emit_task_event(TriggerType.TASK_COMPLETED, task)


async def on_exercise_log_created(
    exercise_log: Any,
    exercise: Any = None,
    manager: TriggerManager | None = None,
) -> None:
    """运动记录创建；exercise 缺省时以记录本身作为 exercise 事实"""
    if exercise is None:
        exercise = exercise_log
    await _manager(manager).emit_event(
        EXERCISE_LOG_CREATED,
        {"exerciseLog": exercise_log, "exercise": exercise},
    )


async def on_exercise_goal_achieved(
    goal: Any,
    progress: Any = None,
    manager: TriggerManager | None = None,
) -> None:
    await _manager(manager).emit_event(
        EXERCISE_GOAL_ACHIEVED,
        {"goal": goal, "progress": progress},
    )


async def on_journal_entry_created(entry: Any, manager: TriggerManager | None = None) -> None:
    await _manager(manager).emit_event(JOURNAL_ENTRY_CREATED, {"journalEntry": entry})


async def on_journal_entry_updated(entry: Any, manager: TriggerManager | None = None) -> None:
    await _manager(manager).emit_event(JOURNAL_ENTRY_UPDATED, {"journalEntry": entry})


async def emit_custom_event(
    event_name: str,
    data: dict[str, Any] | None = None,
    manager: TriggerManager | None = None,
) -> None:
    """发出自定义事件，供 event.based 规则监听"""
    if not isinstance(event_name, str) or not event_name:
        raise ValueError("event_name 必须是非空字符串")
    await _manager(manager).emit_event(event_name, data)
