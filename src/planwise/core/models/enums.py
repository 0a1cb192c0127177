"""枚举定义

包含 Task 的状态/优先级/上下文/重复模式枚举，
以及 AutomationRule 的触发器类型、动作类型、调度类型枚举。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态"""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(StrEnum):
    """Task 优先级"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskContext(StrEnum):
    """Task 上下文"""

    WORK = "work"
    PERSONAL = "personal"


class RecurrenceType(StrEnum):
    """Task 重复模式"""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class TriggerType(StrEnum):
    """AutomationRule 触发器类型

    task.* 的值同时也是事件中心上的事件名。
    """

    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    TASK_COMPLETED = "task.completed"
    TIME_BASED = "time.based"
    EVENT_BASED = "event.based"
    SCHEDULE_BASED = "schedule.based"


class ActionType(StrEnum):
    """AutomationRule 动作类型"""

    SCHEDULE_TASK = "schedule.task"
    CATEGORIZE_TASK = "categorize.task"
    SEND_NOTIFICATION = "send.notification"
    GENERATE_REPORT = "generate.report"
    UPDATE_TASK = "update.task"
    CREATE_TASK = "create.task"


class ScheduleType(StrEnum):
    """定时触发器的调度类型（custom 使用 cron 表达式）"""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


# 由调度器按墙钟时间触发的触发器类型
SCHEDULED_TRIGGER_TYPES: frozenset[TriggerType] = frozenset(
    {TriggerType.TIME_BASED, TriggerType.SCHEDULE_BASED}
)

# Task 生命周期触发器类型
TASK_TRIGGER_TYPES: frozenset[TriggerType] = frozenset(
    {TriggerType.TASK_CREATED, TriggerType.TASK_UPDATED, TriggerType.TASK_COMPLETED}
)
