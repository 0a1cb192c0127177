"""RuleService 测试 -- 持久化、校验与调度注册联动"""

from datetime import UTC, datetime, timedelta

import pytest
from planwise.core.exceptions import InvalidIdError, RuleNotFoundError, RuleValidationError
from planwise.core.models import TriggerType

START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _daily_rule(**overrides) -> dict:
    data = {
        "name": "每日提醒",
        "trigger": {
            "type": "time.based",
            "config": {"schedule": {"type": "daily", "time": "10:00"}},
        },
        "actions": [{"type": "send.notification", "params": {"message": "该复盘了"}}],
    }
    data.update(overrides)
    return data


def _event_rule(**overrides) -> dict:
    data = {
        "name": "任务创建",
        "trigger": {"type": "task.created"},
        "actions": [{"type": "categorize.task", "params": {"category": "inbox"}}],
    }
    data.update(overrides)
    return data


class TestCreateAndQuery:
    async def test_create_persists(self, rule_service):
        rule = await rule_service.create(_daily_rule())
        stored = await rule_service.get(rule.rule_id)
        assert stored == rule
        assert stored.created_at == START
        assert stored.execution_count == 0

    async def test_execution_fields_ignored_on_create(self, rule_service):
        rule = await rule_service.create(
            _daily_rule(execution_count=9, last_executed_at=START.isoformat())
        )
        assert rule.execution_count == 0
        assert rule.last_executed_at is None

    async def test_invalid_rule_not_persisted(self, rule_service):
        with pytest.raises(RuleValidationError):
            await rule_service.create(_daily_rule(rule_id="r1", actions=[]))
        assert await rule_service.get("r1") is None

    async def test_duplicate_id(self, rule_service):
        await rule_service.create(_daily_rule(rule_id="r1"))
        with pytest.raises(RuleValidationError):
            await rule_service.create(_daily_rule(rule_id="r1"))

    async def test_list_sorted_by_priority(self, rule_service, clock):
        await rule_service.create(_event_rule(rule_id="low", priority=1))
        clock.advance(minutes=1)
        await rule_service.create(_event_rule(rule_id="high", priority=5))
        clock.advance(minutes=1)
        await rule_service.create(_event_rule(rule_id="mid", priority=1))

        rules = await rule_service.list_rules()
        assert [r.rule_id for r in rules] == ["high", "low", "mid"]

    async def test_list_filters(self, rule_service):
        await rule_service.create(_event_rule(rule_id="on"))
        await rule_service.create(_event_rule(rule_id="off", enabled=False))
        await rule_service.create(_daily_rule(rule_id="daily"))

        enabled = await rule_service.list_rules(enabled=True)
        assert sorted(r.rule_id for r in enabled) == ["daily", "on"]

        disabled = await rule_service.list_rules(enabled=False)
        assert [r.rule_id for r in disabled] == ["off"]

        timed = await rule_service.list_rules(trigger_type=TriggerType.TIME_BASED)
        assert [r.rule_id for r in timed] == ["daily"]

        both = await rule_service.list_rules(enabled=True, trigger_type="task.created")
        assert [r.rule_id for r in both] == ["on"]

    async def test_invalid_id(self, rule_service):
        with pytest.raises(InvalidIdError):
            await rule_service.get("")


class TestUpdateAndDelete:
    async def test_update_revalidates(self, rule_service, clock):
        rule = await rule_service.create(_daily_rule())
        clock.advance(minutes=5)
        updated = await rule_service.update(rule.rule_id, {"name": "新的名字", "priority": 3})
        assert updated.name == "新的名字"
        assert updated.priority == 3
        assert updated.created_at == START
        assert updated.updated_at == START + timedelta(minutes=5)

        with pytest.raises(RuleValidationError):
            await rule_service.update(rule.rule_id, {"actions": []})
        assert (await rule_service.get(rule.rule_id)).name == "新的名字"

    async def test_update_ignores_execution_fields(self, rule_service):
        rule = await rule_service.create(_daily_rule())
        updated = await rule_service.update(rule.rule_id, {"execution_count": 42})
        assert updated.execution_count == 0

    async def test_update_missing(self, rule_service):
        with pytest.raises(RuleNotFoundError):
            await rule_service.update("ghost", {"name": "x"})

    async def test_delete(self, rule_service):
        rule = await rule_service.create(_daily_rule())
        await rule_service.delete(rule.rule_id)
        assert await rule_service.get(rule.rule_id) is None
        with pytest.raises(RuleNotFoundError):
            await rule_service.delete(rule.rule_id)

    async def test_record_execution(self, rule_service, clock):
        rule = await rule_service.create(_daily_rule())
        clock.advance(hours=1)
        recorded = await rule_service.record_execution(rule.rule_id)
        assert recorded.execution_count == 1
        assert recorded.last_executed_at == START + timedelta(hours=1)
        assert (await rule_service.get(rule.rule_id)).execution_count == 1

    async def test_record_execution_missing(self, rule_service):
        with pytest.raises(RuleNotFoundError):
            await rule_service.record_execution("ghost")


class TestRegistrationSync:
    """create / update / delete 与 TriggerManager 注册状态同步"""

    async def test_enabled_scheduled_rule_armed(self, rule_service, trigger_manager):
        rule = await rule_service.create(_daily_rule())
        handle = trigger_manager.get_handle(rule.rule_id)
        assert handle is not None
        assert handle.next_fire_at == datetime(2026, 3, 2, 10, 0, tzinfo=UTC)

    async def test_disabled_rule_not_armed(self, rule_service, trigger_manager):
        rule = await rule_service.create(_daily_rule(enabled=False))
        assert rule.rule_id not in trigger_manager.active_rule_ids

    async def test_disable_and_enable(self, rule_service, trigger_manager):
        rule = await rule_service.create(_daily_rule())
        handle = trigger_manager.get_handle(rule.rule_id)

        await rule_service.set_enabled(rule.rule_id, False)
        assert rule.rule_id not in trigger_manager.active_rule_ids
        assert handle.cancelled

        await rule_service.set_enabled(rule.rule_id, True)
        assert rule.rule_id in trigger_manager.active_rule_ids

    async def test_delete_unregisters(self, rule_service, trigger_manager):
        rule = await rule_service.create(_event_rule())
        assert rule.rule_id in trigger_manager.bound_rule_ids
        await rule_service.delete(rule.rule_id)
        assert rule.rule_id not in trigger_manager.bound_rule_ids
        assert trigger_manager.hub.listener_count("task.created") == 0

    async def test_schedule_change_rearms(self, rule_service, trigger_manager):
        rule = await rule_service.create(_daily_rule())
        await rule_service.update(
            rule.rule_id,
            {
                "trigger": {
                    "type": "time.based",
                    "config": {"schedule": {"type": "daily", "time": "08:00"}},
                }
            },
        )
        handle = trigger_manager.get_handle(rule.rule_id)
        assert handle.next_fire_at == datetime(2026, 3, 3, 8, 0, tzinfo=UTC)
