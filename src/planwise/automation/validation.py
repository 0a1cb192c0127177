"""AutomationRule 规范化与校验

规则数据以 dict 形式进入本模块：
- normalize_rule: 补默认值，日期统一为 UTC ISO 字符串
- validate_rule: 返回结构化 ValidationResult，收集全部错误而不是遇错即停
- validate_and_sanitize: 先清洗文本字段再校验
- to_evaluator_format: 投影为条件求值器消费的格式
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError
from ulid import ULID

from planwise.core.config import RULE_DESCRIPTION_MAX_LENGTH, RULE_NAME_MAX_LENGTH
from planwise.core.exceptions import RuleValidationError, format_validation_errors
from planwise.core.models import (
    ACTION_PARAM_SCHEMAS,
    SCHEDULED_TRIGGER_TYPES,
    TRIGGER_CONFIG_SCHEMAS,
    ActionType,
    AutomationRule,
    ScheduleType,
    TriggerType,
    ValidationResult,
)
from planwise.core.store import utc_text
from planwise.core.text import sanitize_string

from .schedule import CronExpression, parse_time

EVALUATOR_EVENT_TYPE = "automation-action"

_DATE_FIELDS = ("last_executed_at", "created_at", "updated_at")


def _rule_dict(rule: AutomationRule | dict[str, Any]) -> dict[str, Any]:
    if isinstance(rule, AutomationRule):
        return rule.model_dump(mode="json")
    return dict(rule)


def _to_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# ============================================================
# 规范化
# ============================================================


def normalize_rule(
    data: dict[str, Any] | None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """补齐默认值并规范化字段类型

    Raises:
        RuleValidationError: 日期字段无法解析
    """
    rule = dict(data or {})
    now_text = utc_text(now or datetime.now(UTC))

    rule["rule_id"] = rule.get("rule_id") or str(ULID())
    rule.setdefault("name", "")
    rule.setdefault("description", None)

    enabled = rule.get("enabled", True)
    if not isinstance(enabled, bool):
        enabled = enabled is True or str(enabled).strip().lower() == "true"
    rule["enabled"] = enabled

    trigger = rule.get("trigger")
    if not isinstance(trigger, dict):
        trigger = {}
    rule["trigger"] = {
        **trigger,
        "type": trigger.get("type") or TriggerType.TASK_CREATED.value,
        "config": trigger.get("config") if isinstance(trigger.get("config"), dict) else {},
    }

    if not isinstance(rule.get("conditions"), dict):
        rule["conditions"] = {"all": []}
    if not isinstance(rule.get("actions"), list):
        rule["actions"] = []

    rule["priority"] = _to_int(rule.get("priority"))
    rule["execution_count"] = _to_int(rule.get("execution_count"))

    errors: list[str] = []
    for field in _DATE_FIELDS:
        value = rule.get(field)
        if not value:
            rule[field] = None if field == "last_executed_at" else now_text
            continue
        try:
            rule[field] = utc_text(value)
        except (TypeError, ValueError):
            errors.append(f"{field}: 日期格式非法")
    if errors:
        raise RuleValidationError(errors)
    return rule


# ============================================================
# 校验
# ============================================================


def _validate_name(name: Any) -> list[str]:
    if not isinstance(name, str) or not sanitize_string(name):
        return ["name: 规则名称不能为空"]
    if len(sanitize_string(name)) > RULE_NAME_MAX_LENGTH:
        return [f"name: 规则名称不能超过 {RULE_NAME_MAX_LENGTH} 个字符"]
    return []


def _validate_description(description: Any) -> list[str]:
    if description is None:
        return []
    if not isinstance(description, str):
        return ["description: 必须是字符串"]
    if len(sanitize_string(description)) > RULE_DESCRIPTION_MAX_LENGTH:
        return [f"description: 不能超过 {RULE_DESCRIPTION_MAX_LENGTH} 个字符"]
    return []


def _validate_schedule(config: dict[str, Any]) -> list[str]:
    schedule = config.get("schedule") or {}
    schedule_type = schedule.get("type")
    errors: list[str] = []
    if schedule_type == ScheduleType.CUSTOM:
        try:
            CronExpression.parse(schedule.get("expression") or "")
        except ValueError as e:
            errors.append(f"trigger.config.schedule.expression: {e}")
        return errors

    try:
        parse_time(schedule.get("time") or "")
    except ValueError as e:
        errors.append(f"trigger.config.schedule.time: {e}")
    if schedule_type == ScheduleType.WEEKLY:
        days = schedule.get("days_of_week", schedule.get("daysOfWeek"))
        if not days:
            errors.append("trigger.config.schedule.days_of_week: weekly 调度至少需要一天")
    return errors


def _validate_trigger(trigger: Any) -> list[str]:
    if not isinstance(trigger, dict):
        return ["trigger: 必须是对象"]
    try:
        trigger_type = TriggerType(trigger.get("type"))
    except ValueError:
        allowed = ", ".join(t.value for t in TriggerType)
        return [f"trigger.type: 必须是以下之一: {allowed}"]

    config = trigger.get("config", {})
    if not isinstance(config, dict):
        return ["trigger.config: 必须是对象"]

    try:
        TRIGGER_CONFIG_SCHEMAS[trigger_type].model_validate(config)
    except ValidationError as e:
        return [f"trigger.config.{msg}" for msg in format_validation_errors(e)]

    if trigger_type in SCHEDULED_TRIGGER_TYPES:
        return _validate_schedule(config)
    return []


def _validate_condition_group(group: Any, path: str) -> list[str]:
    if not isinstance(group, dict):
        return [f"{path}: 必须是对象"]
    keys = [key for key in ("all", "any") if key in group]
    if not keys:
        return [f"{path}: 必须包含 all 或 any"]

    errors: list[str] = []
    for key in keys:
        items = group[key]
        if not isinstance(items, list):
            errors.append(f"{path}.{key}: 必须是数组")
            continue
        for i, item in enumerate(items):
            item_path = f"{path}.{key}[{i}]"
            if isinstance(item, dict) and ("all" in item or "any" in item):
                errors.extend(_validate_condition_group(item, item_path))
            else:
                errors.extend(_validate_condition(item, item_path))
    return errors


def _validate_condition(condition: Any, path: str) -> list[str]:
    if not isinstance(condition, dict):
        return [f"{path}: 必须是对象"]
    errors: list[str] = []
    if not isinstance(condition.get("fact"), str) or not condition["fact"]:
        errors.append(f"{path}.fact: 必须是非空字符串")
    if not isinstance(condition.get("operator"), str) or not condition["operator"]:
        errors.append(f"{path}.operator: 必须是非空字符串")
    if "value" not in condition:
        errors.append(f"{path}.value: 缺少 value")
    return errors


def _validate_actions(actions: Any) -> list[str]:
    if not isinstance(actions, list):
        return ["actions: 必须是数组"]
    if not actions:
        return ["actions: 至少需要一个动作"]

    errors: list[str] = []
    for i, action in enumerate(actions):
        path = f"actions[{i}]"
        if not isinstance(action, dict):
            errors.append(f"{path}: 必须是对象")
            continue
        try:
            action_type = ActionType(action.get("type"))
        except ValueError:
            allowed = ", ".join(t.value for t in ActionType)
            errors.append(f"{path}.type: 必须是以下之一: {allowed}")
            continue
        params = action.get("params", {})
        if not isinstance(params, dict):
            errors.append(f"{path}.params: 必须是对象")
            continue
        try:
            ACTION_PARAM_SCHEMAS[action_type].model_validate(params)
        except ValidationError as e:
            errors.extend(f"{path}.params.{msg}" for msg in format_validation_errors(e))
    return errors


def validate_rule(
    rule: AutomationRule | dict[str, Any],
    allow_partial: bool = False,
) -> ValidationResult:
    """校验规则结构

    Args:
        rule: 规则对象或数据
        allow_partial: True 时只校验出现的字段（用于 update patch）
    """
    data = _rule_dict(rule)
    errors: list[str] = []

    def present(field: str) -> bool:
        return not allow_partial or field in data

    if present("name"):
        errors.extend(_validate_name(data.get("name")))
    if "description" in data:
        errors.extend(_validate_description(data["description"]))
    if present("enabled") and not isinstance(data.get("enabled"), bool):
        errors.append("enabled: 必须是布尔值")
    if present("trigger"):
        errors.extend(_validate_trigger(data.get("trigger")))
    if present("conditions"):
        errors.extend(_validate_condition_group(data.get("conditions"), "conditions"))
    if present("actions"):
        errors.extend(_validate_actions(data.get("actions")))

    priority = data.get("priority")
    if priority is not None and (isinstance(priority, bool) or not isinstance(priority, int)):
        errors.append("priority: 必须是整数")
    count = data.get("execution_count")
    if count is not None and (
        isinstance(count, bool) or not isinstance(count, int) or count < 0
    ):
        errors.append("execution_count: 必须是非负整数")

    for field in _DATE_FIELDS:
        value = data.get(field)
        if value is None or isinstance(value, datetime):
            continue
        try:
            datetime.fromisoformat(value)
        except (TypeError, ValueError):
            errors.append(f"{field}: 必须是 ISO 8601 日期字符串")

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        rule=data if not errors else None,
    )


def sanitize_rule(rule: AutomationRule | dict[str, Any]) -> dict[str, Any]:
    """清洗 name / description 以及通知类动作的文本参数"""
    data = _rule_dict(rule)
    if isinstance(data.get("name"), str):
        data["name"] = sanitize_string(data["name"])
    if isinstance(data.get("description"), str):
        data["description"] = sanitize_string(data["description"])
    if isinstance(data.get("actions"), list):
        actions = []
        for action in data["actions"]:
            if isinstance(action, dict) and isinstance(action.get("params"), dict):
                params = dict(action["params"])
                for key in ("message", "title"):
                    if isinstance(params.get(key), str):
                        params[key] = sanitize_string(params[key])
                action = {**action, "params": params}
            actions.append(action)
        data["actions"] = actions
    return data


def validate_and_sanitize(
    rule: AutomationRule | dict[str, Any],
    allow_partial: bool = False,
) -> ValidationResult:
    """先清洗文本字段再校验；校验通过时 result.rule 为清洗后的数据"""
    return validate_rule(sanitize_rule(rule), allow_partial=allow_partial)


def build_rule(data: dict[str, Any], now: datetime | None = None) -> AutomationRule:
    """规范化 + 清洗 + 校验，返回 AutomationRule

    Raises:
        RuleValidationError: 校验失败
    """
    result = validate_and_sanitize(normalize_rule(data, now=now))
    if not result.is_valid:
        raise RuleValidationError(result.errors)
    try:
        return AutomationRule.model_validate(result.rule)
    except ValidationError as e:
        raise RuleValidationError(format_validation_errors(e)) from e


# ============================================================
# 求值器格式
# ============================================================


def to_evaluator_format(rule: AutomationRule | dict[str, Any]) -> dict[str, Any]:
    """投影为条件求值器消费的格式

    {conditions, priority, event: {type: "automation-action",
     params: {ruleId, actions, priority}}}
    """
    if isinstance(rule, AutomationRule):
        data = rule.model_dump(mode="json")
    else:
        data = normalize_rule(rule)
    return {
        "conditions": data["conditions"],
        "priority": data["priority"],
        "event": {
            "type": EVALUATOR_EVENT_TYPE,
            "params": {
                "ruleId": data["rule_id"],
                "actions": data["actions"],
                "priority": data["priority"],
            },
        },
    }
