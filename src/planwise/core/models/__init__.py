"""Planwise Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    SCHEDULED_TRIGGER_TYPES,
    TASK_TRIGGER_TYPES,
    ActionType,
    RecurrenceType,
    ScheduleType,
    TaskContext,
    TaskPriority,
    TaskStatus,
    TriggerType,
)
from .rule import (
    ACTION_PARAM_SCHEMAS,
    TRIGGER_CONFIG_SCHEMAS,
    AutomationRule,
    RuleAction,
    RuleTrigger,
    ScheduleConfig,
    ValidationResult,
)
from .task import RecurrencePattern, Task, TaskFilter

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskPriority",
    "TaskContext",
    "RecurrenceType",
    "TriggerType",
    "ActionType",
    "ScheduleType",
    "SCHEDULED_TRIGGER_TYPES",
    "TASK_TRIGGER_TYPES",
    # Task
    "Task",
    "TaskFilter",
    "RecurrencePattern",
    # AutomationRule
    "AutomationRule",
    "RuleTrigger",
    "RuleAction",
    "ScheduleConfig",
    "ValidationResult",
    "TRIGGER_CONFIG_SCHEMAS",
    "ACTION_PARAM_SCHEMAS",
]
