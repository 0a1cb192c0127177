"""Planwise 任务子系统 -- TaskService / TimeTracker / 关系图 / 重复规则"""

from .graph import RelationGraph
from .recurrence import build_rrule, next_occurrence, next_occurrences
from .task_service import TaskService
from .time_tracking import ActiveTimer, TimeTracker

__all__ = [
    "ActiveTimer",
    "RelationGraph",
    "TaskService",
    "TimeTracker",
    "build_rrule",
    "next_occurrence",
    "next_occurrences",
]
