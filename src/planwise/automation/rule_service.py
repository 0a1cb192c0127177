"""RuleService -- AutomationRule 持久化

写入前经 validation.build_rule 规范化、清洗、校验。
关联 TriggerManager 时：create/update 后按 enabled 注册或注销，delete 后注销。
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import structlog

from planwise.core.exceptions import InvalidIdError, RuleNotFoundError, RuleValidationError
from planwise.core.models import AutomationRule, TriggerType
from planwise.core.store import StoreGroup

from .validation import build_rule

log = structlog.get_logger()

# update patch 中被忽略的字段（执行记录只由 TriggerManager 修改）
_IMMUTABLE_FIELDS = (
    "rule_id",
    "created_at",
    "updated_at",
    "execution_count",
    "last_executed_at",
)


def _require_id(rule_id: Any) -> str:
    if not isinstance(rule_id, str) or not rule_id.strip():
        raise InvalidIdError("rule_id")
    return rule_id


class RuleService:
    """自动化规则业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        trigger_manager=None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._stores = store_group
        self._trigger_manager = trigger_manager
        self._clock = clock or (lambda: datetime.now(UTC))
        if trigger_manager is not None:
            trigger_manager.attach_rule_service(self)

    async def create(self, data: dict[str, Any]) -> AutomationRule:
        """创建规则

        Raises:
            RuleValidationError: 规则结构非法或 rule_id 已存在
        """
        payload = {
            k: v for k, v in dict(data).items() if k not in ("execution_count", "last_executed_at")
        }
        payload.pop("created_at", None)
        payload.pop("updated_at", None)
        rule = build_rule(payload, now=self._clock())

        async with self._stores.transaction():
            if await self._stores.rule_records.get(rule.rule_id) is not None:
                raise RuleValidationError([f"rule_id: 规则已存在 {rule.rule_id}"])
            try:
                await self._stores.rule_records.add(rule.model_dump(mode="json"))
            except aiosqlite.IntegrityError as e:
                raise RuleValidationError([f"rule_id: 规则已存在 {rule.rule_id}"]) from e

        log.info(
            "rule_created",
            rule_id=rule.rule_id,
            trigger_type=rule.trigger.type.value,
            enabled=rule.enabled,
        )
        self._sync_registration(rule)
        return rule

    async def get(self, rule_id: str) -> AutomationRule | None:
        _require_id(rule_id)
        async with self._stores.transaction(readonly=True):
            row = await self._stores.rule_records.get(rule_id)
        return AutomationRule.model_validate(row) if row is not None else None

    async def list_rules(
        self,
        enabled: bool | None = None,
        trigger_type: TriggerType | str | None = None,
    ) -> list[AutomationRule]:
        """查询规则，按 priority 降序、created_at 正序"""
        records = self._stores.rule_records
        async with self._stores.transaction(readonly=True):
            if enabled is not None:
                rows = await records.query_by_index("enabled", int(enabled))
            elif trigger_type is not None:
                rows = await records.query_by_index(
                    "trigger_type", TriggerType(trigger_type).value
                )
            else:
                rows = await records.get_all()

        rules = [AutomationRule.model_validate(row) for row in rows]
        if trigger_type is not None:
            rules = [r for r in rules if r.trigger.type == TriggerType(trigger_type)]
        rules.sort(key=lambda r: (-r.priority, r.created_at, r.rule_id))
        return rules

    async def update(self, rule_id: str, patch: dict[str, Any]) -> AutomationRule:
        """部分更新规则，合并后整体重新校验

        Raises:
            RuleNotFoundError: 规则不存在
            RuleValidationError: 合并后的规则非法
        """
        _require_id(rule_id)
        cleaned = {k: v for k, v in patch.items() if k not in _IMMUTABLE_FIELDS}
        now = self._clock()

        async with self._stores.transaction():
            row = await self._stores.rule_records.get(rule_id)
            if row is None:
                raise RuleNotFoundError(rule_id)
            merged = {**row, **cleaned, "updated_at": now}
            rule = build_rule(merged, now=now)
            await self._stores.rule_records.put(rule.model_dump(mode="json"))

        log.info("rule_updated", rule_id=rule_id, fields=sorted(cleaned))
        self._sync_registration(rule)
        return rule

    async def set_enabled(self, rule_id: str, enabled: bool) -> AutomationRule:
        """启用/禁用规则"""
        return await self.update(rule_id, {"enabled": enabled})

    async def delete(self, rule_id: str) -> None:
        """删除规则并注销调度

        Raises:
            RuleNotFoundError: 规则不存在
        """
        _require_id(rule_id)
        async with self._stores.transaction():
            deleted = await self._stores.rule_records.delete(rule_id)
        if not deleted:
            raise RuleNotFoundError(rule_id)
        if self._trigger_manager is not None:
            self._trigger_manager.unregister_rule(rule_id)
        log.info("rule_deleted", rule_id=rule_id)

    async def record_execution(
        self,
        rule_id: str,
        executed_at: datetime | None = None,
    ) -> AutomationRule:
        """execution_count + 1 并写入 last_executed_at

        Raises:
            RuleNotFoundError: 规则不存在
        """
        _require_id(rule_id)
        executed_at = executed_at or self._clock()
        async with self._stores.transaction():
            row = await self._stores.rule_records.get(rule_id)
            if row is None:
                raise RuleNotFoundError(rule_id)
            rule = AutomationRule.model_validate(row)
            rule = rule.model_copy(
                update={
                    "execution_count": rule.execution_count + 1,
                    "last_executed_at": executed_at,
                }
            )
            await self._stores.rule_records.put(rule.model_dump(mode="json"))
        return rule

    def _sync_registration(self, rule: AutomationRule) -> None:
        if self._trigger_manager is None:
            return
        if rule.enabled:
            self._trigger_manager.register_rule(rule)
        else:
            self._trigger_manager.unregister_rule(rule.rule_id)
