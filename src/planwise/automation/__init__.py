"""Planwise 自动化子系统 -- 规则存储、校验、触发与参考求值器"""

from .actions import ActionDispatcher
from .evaluator import ConditionEvaluator, RuleEvaluator, resolve_fact
from .event_hub import EventHub
from .rule_service import RuleService
from .schedule import CronExpression, next_fire_time
from .trigger_manager import (
    ScheduleHandle,
    TriggerManager,
    get_trigger_manager,
    noop_rule_evaluator,
    reset_trigger_manager,
)
from .validation import (
    EVALUATOR_EVENT_TYPE,
    build_rule,
    normalize_rule,
    sanitize_rule,
    to_evaluator_format,
    validate_and_sanitize,
    validate_rule,
)

__all__ = [
    "ActionDispatcher",
    "ConditionEvaluator",
    "CronExpression",
    "EVALUATOR_EVENT_TYPE",
    "EventHub",
    "RuleEvaluator",
    "RuleService",
    "ScheduleHandle",
    "TriggerManager",
    "build_rule",
    "get_trigger_manager",
    "next_fire_time",
    "noop_rule_evaluator",
    "normalize_rule",
    "reset_trigger_manager",
    "resolve_fact",
    "sanitize_rule",
    "to_evaluator_format",
    "validate_and_sanitize",
    "validate_rule",
]
