"""参考规则求值器

ConditionEvaluator 按 json-rules-engine 的语义求值 {all|any} 条件树；
RuleEvaluator 可直接交给 TriggerManager.set_rule_evaluator，
条件满足时通过 ActionDispatcher 依次执行规则动作。
"""

import operator
from collections.abc import Callable, Mapping
from typing import Any

import structlog

from planwise.core.models import AutomationRule

from .validation import to_evaluator_format

log = structlog.get_logger()


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    """大小比较：类型不可比较（含 None）时视为不满足"""

    def compare(fact_value: Any, value: Any) -> bool:
        if fact_value is None or value is None:
            return False
        try:
            return op(fact_value, value)
        except TypeError:
            return False

    return compare


def _member(fact_value: Any, value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset)) and fact_value in value


def _contains(fact_value: Any, value: Any) -> bool:
    if isinstance(fact_value, str):
        return isinstance(value, str) and value in fact_value
    return isinstance(fact_value, (list, tuple, set, frozenset)) and value in fact_value


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equal": operator.eq,
    "notEqual": operator.ne,
    "lessThan": _compare(operator.lt),
    "lessThanInclusive": _compare(operator.le),
    "greaterThan": _compare(operator.gt),
    "greaterThanInclusive": _compare(operator.ge),
    "in": _member,
    "notIn": lambda fact_value, value: not _member(fact_value, value),
    "contains": _contains,
    "doesNotContain": lambda fact_value, value: not _contains(fact_value, value),
}


def resolve_fact(facts: Mapping[str, Any], name: str) -> Any:
    """解析事实名；带点的名称（task.priority）逐层进入嵌套映射，找不到返回 None"""
    if name in facts:
        return facts[name]
    current: Any = facts
    for part in name.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


class ConditionEvaluator:
    """条件树求值器"""

    def __init__(self, operators: dict[str, Callable[[Any, Any], bool]] | None = None) -> None:
        self._operators = {**OPERATORS, **(operators or {})}

    def evaluate(self, conditions: Mapping[str, Any], facts: Mapping[str, Any]) -> bool:
        """求值条件树

        空的 all 为真，空的 any 为假；同时出现 all 与 any 时两者都需满足。

        Raises:
            ValueError: 未知运算符或条件结构非法
        """
        if "all" not in conditions and "any" not in conditions:
            raise ValueError("条件必须包含 all 或 any")
        result = True
        if "all" in conditions:
            result = all(self._evaluate_item(item, facts) for item in conditions["all"])
        if result and "any" in conditions:
            result = any(self._evaluate_item(item, facts) for item in conditions["any"])
        return result

    def _evaluate_item(self, item: Mapping[str, Any], facts: Mapping[str, Any]) -> bool:
        if "all" in item or "any" in item:
            return self.evaluate(item, facts)
        op_name = item.get("operator")
        op = self._operators.get(op_name)
        if op is None:
            raise ValueError(f"未知的条件运算符: {op_name}")
        return op(resolve_fact(facts, item["fact"]), item.get("value"))


class RuleEvaluator:
    """TriggerManager 使用的 evaluator：条件匹配后执行动作"""

    def __init__(
        self,
        condition_evaluator: ConditionEvaluator | None = None,
        action_dispatcher=None,
    ) -> None:
        self._conditions = condition_evaluator or ConditionEvaluator()
        self._dispatcher = action_dispatcher

    async def __call__(self, rule: AutomationRule, facts: dict[str, Any]) -> dict[str, Any]:
        engine_rule = to_evaluator_format(rule)
        if not self._conditions.evaluate(engine_rule["conditions"], facts):
            return {"triggered": False}

        results: list[dict[str, Any]] = []
        if self._dispatcher is not None:
            results = await self._dispatcher.dispatch_all(rule, facts)
        log.debug("rule_conditions_matched", rule_id=rule.rule_id, actions=len(results))
        return {"triggered": True, "event": engine_rule["event"], "results": results}
