"""Domain Models 单元测试

测试内容：
1. Task 字段校验与规范化
2. RecurrencePattern / ScheduleConfig 校验
3. AutomationRule.event_name
4. 异常错误码
"""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError
from planwise.core.exceptions import (
    CircularDependencyError,
    RuleValidationError,
    TaskNotFoundError,
    TimerMismatchError,
    format_validation_errors,
)
from planwise.core.models import (
    AutomationRule,
    RecurrencePattern,
    RecurrenceType,
    ScheduleConfig,
    Task,
    TaskContext,
    TaskPriority,
    TaskStatus,
    TriggerType,
)
from planwise.core.text import sanitize_string

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _task(**overrides) -> Task:
    return Task(task_id="t1", title="写周报", created_at=NOW, updated_at=NOW, **overrides)


class TestTask:
    """Task 模型校验"""

    def test_defaults(self):
        """默认状态、优先级、上下文"""
        task = _task()
        assert task.status == TaskStatus.PENDING
        assert task.priority == TaskPriority.MEDIUM
        assert task.context == TaskContext.PERSONAL
        assert task.time_spent == 0
        assert task.tags == []
        assert task.is_deleted is False

    def test_title_trimmed_and_required(self):
        """标题去除首尾空白，空标题非法"""
        task = Task(task_id="t1", title="  写周报  ", created_at=NOW, updated_at=NOW)
        assert task.title == "写周报"
        with pytest.raises(ValidationError):
            Task(task_id="t1", title="   ", created_at=NOW, updated_at=NOW)

    def test_tags_deduplicated_case_insensitive(self):
        """标签按大小写不敏感去重并保持顺序"""
        task = _task(tags=["Work", "home", "work", " home "])
        assert task.tags == ["Work", "home"]

    def test_dependencies_deduplicated(self):
        task = _task(dependencies=["a", "b", "a"])
        assert task.dependencies == ["a", "b"]

    def test_invalid_enum_rejected(self):
        with pytest.raises(ValidationError):
            _task(priority="urgent")

    def test_naive_datetime_treated_as_utc(self):
        """naive 时间视为 UTC"""
        task = _task(due_date=datetime(2026, 3, 5, 12, 0))
        assert task.due_date == datetime(2026, 3, 5, 12, 0, tzinfo=UTC)

    def test_json_round_trip(self):
        """model_dump(mode=json) 可以被重新校验"""
        task = _task(tags=["x"], due_date=NOW, dependencies=["a"])
        assert Task.model_validate(task.model_dump(mode="json")) == task


class TestRecurrencePattern:
    def test_weekly_requires_days(self):
        with pytest.raises(ValidationError):
            RecurrencePattern(pattern=RecurrenceType.WEEKLY)

    def test_camel_case_alias_accepted(self):
        """daysOfWeek 别名，结果排序去重"""
        pattern = RecurrencePattern.model_validate(
            {"pattern": "weekly", "daysOfWeek": [3, 1, 3]}
        )
        assert pattern.days_of_week == [1, 3]

    def test_custom_requires_freq(self):
        with pytest.raises(ValidationError):
            RecurrencePattern(pattern=RecurrenceType.CUSTOM, rrule_options={"interval": 2})

    def test_day_out_of_range(self):
        with pytest.raises(ValidationError):
            RecurrencePattern(pattern=RecurrenceType.WEEKLY, days_of_week=[7])


class TestScheduleConfig:
    def test_days_of_week_range(self):
        with pytest.raises(ValidationError):
            ScheduleConfig(type="weekly", time="10:00", days_of_week=[-1])

    def test_day_of_month_range(self):
        with pytest.raises(ValidationError):
            ScheduleConfig(type="monthly", time="10:00", day_of_month=32)


class TestAutomationRule:
    def _rule(self, trigger: dict) -> AutomationRule:
        return AutomationRule(
            rule_id="r1",
            name="规则",
            trigger=trigger,
            created_at=NOW,
            updated_at=NOW,
        )

    def test_event_name_for_task_trigger(self):
        rule = self._rule({"type": "task.completed"})
        assert rule.event_name == TriggerType.TASK_COMPLETED.value

    def test_event_name_for_event_trigger(self):
        rule = self._rule({"type": "event.based", "config": {"event": "journal.entry.created"}})
        assert rule.event_name == "journal.entry.created"

    def test_scheduled_rule_has_no_event_name(self):
        rule = self._rule(
            {"type": "time.based", "config": {"schedule": {"type": "daily", "time": "10:00"}}}
        )
        assert rule.event_name is None


class TestExceptions:
    """异常携带稳定的错误码"""

    def test_codes(self):
        assert TaskNotFoundError("x").code == "TASK_NOT_FOUND"
        assert CircularDependencyError("loop", cycle=["a", "b", "a"]).cycle == ["a", "b", "a"]
        assert TimerMismatchError("a", "b").code == "TIMER_MISMATCH"
        error = RuleValidationError(["name: 规则名称不能为空"])
        assert error.code == "VALIDATION_ERROR"
        assert error.errors == ["name: 规则名称不能为空"]

    def test_format_validation_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            Task(task_id="t1", title="", created_at=NOW, updated_at=NOW)
        messages = format_validation_errors(exc_info.value)
        assert messages and messages[0].startswith("title: ")


class TestSanitize:
    def test_strips_markup(self):
        assert sanitize_string("  <b>周报</b><script>alert(1)</script> ") == "周报"

    def test_strips_event_handlers_and_js_protocol(self):
        assert sanitize_string('onclick="x" javascript:go') == '"x" go'
