"""Task Domain Model

tasks 表按 task_id 存储完整记录（JSON），
status / priority / context / parent_id / due_date / deleted_at 冗余为索引列。
依赖与父子关系的无环约束由 TaskService 在写入前校验，模型本身只做字段级校验。
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from ..config import (
    TASK_DESCRIPTION_MAX_LENGTH,
    TASK_TAG_MAX_LENGTH,
    TASK_TITLE_MAX_LENGTH,
)
from .enums import RecurrenceType, TaskContext, TaskPriority, TaskStatus


def ensure_aware(value: datetime | None) -> datetime | None:
    """naive datetime 视为 UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class RecurrencePattern(BaseModel):
    """Task 重复模式

    weekly 需要 days_of_week（0-6，0 = 周日）；
    custom 直接使用 rrule_options（至少包含 freq）。
    """

    pattern: RecurrenceType = Field(description="重复模式")
    interval: int = Field(default=1, ge=1, description="间隔（daily/weekly/monthly）")
    days_of_week: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("days_of_week", "daysOfWeek"),
        description="周几重复，0 = 周日",
    )
    end_date: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("end_date", "endDate"),
        description="重复截止时间",
    )
    rrule_options: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("rrule_options", "rruleOptions"),
        description="custom 模式的 rrule 参数",
    )

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days_of_week 必须是 0-6 之间的整数")
        return sorted(set(value))

    @field_validator("end_date")
    @classmethod
    def _aware_end_date(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value)

    @model_validator(mode="after")
    def _check_pattern(self) -> "RecurrencePattern":
        if self.pattern == RecurrenceType.WEEKLY and not self.days_of_week:
            raise ValueError("weekly 重复至少需要一个 days_of_week")
        if self.pattern == RecurrenceType.CUSTOM:
            if not self.rrule_options or "freq" not in self.rrule_options:
                raise ValueError("custom 重复需要包含 freq 的 rrule_options")
        return self


class Task(BaseModel):
    """Task 数据模型

    不变量（由 TaskService 维护）:
    - deleted_at 非空 ⇒ status = cancelled
    - completed_at 非空 ⇔ status = completed
    - dependencies / parent_id 组成的联合图无环
    """

    task_id: str = Field(description="唯一标识，ULID 格式，创建后不可变")
    title: str = Field(description="任务标题")
    description: str | None = Field(default=None, description="任务描述")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="优先级")
    context: TaskContext = Field(default=TaskContext.PERSONAL, description="上下文")
    tags: list[str] = Field(default_factory=list, description="标签（去重，保持顺序）")
    due_date: datetime | None = Field(default=None, description="截止时间")
    time_estimate: int | None = Field(default=None, ge=0, description="预估耗时（分钟）")
    time_spent: int = Field(default=0, ge=0, description="累计耗时（分钟）")
    recurrence: RecurrencePattern | None = Field(default=None, description="重复模式")
    parent_id: str | None = Field(default=None, description="父任务 ID（至多一个）")
    dependencies: list[str] = Field(
        default_factory=list,
        description="本任务依赖的任务 ID（去重，保持顺序）",
    )
    completed_at: datetime | None = Field(default=None, description="完成时间")
    deleted_at: datetime | None = Field(default=None, description="软删除时间")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("标题不能为空")
        if len(value) > TASK_TITLE_MAX_LENGTH:
            raise ValueError(f"标题不能超过 {TASK_TITLE_MAX_LENGTH} 个字符")
        return value

    @field_validator("description")
    @classmethod
    def _check_description(cls, value: str | None) -> str | None:
        if value is not None and len(value) > TASK_DESCRIPTION_MAX_LENGTH:
            raise ValueError(f"描述不能超过 {TASK_DESCRIPTION_MAX_LENGTH} 个字符")
        return value

    @field_validator("tags")
    @classmethod
    def _check_tags(cls, value: list[str]) -> list[str]:
        seen: set[str] = set()
        result: list[str] = []
        for tag in value:
            tag = tag.strip()
            if not tag:
                raise ValueError("标签不能为空字符串")
            if len(tag) > TASK_TAG_MAX_LENGTH:
                raise ValueError(f"单个标签不能超过 {TASK_TAG_MAX_LENGTH} 个字符")
            if tag.lower() in seen:
                continue
            seen.add(tag.lower())
            result.append(tag)
        return result

    @field_validator("dependencies")
    @classmethod
    def _dedupe_dependencies(cls, value: list[str]) -> list[str]:
        if any(not dep for dep in value):
            raise ValueError("依赖 ID 必须是非空字符串")
        return list(dict.fromkeys(value))

    @field_validator("parent_id")
    @classmethod
    def _check_parent_id(cls, value: str | None) -> str | None:
        if value is not None and not value:
            raise ValueError("parent_id 必须是非空字符串")
        return value

    @field_validator("due_date", "completed_at", "deleted_at", "created_at", "updated_at")
    @classmethod
    def _aware_datetimes(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class TaskFilter(BaseModel):
    """TaskService.list_tasks 的筛选条件，多个条件按 AND 组合"""

    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    context: TaskContext | None = None
    parent_id: str | None = None
    due_from: datetime | None = Field(default=None, description="截止时间下界（含）")
    due_to: datetime | None = Field(default=None, description="截止时间上界（含）")
    due_or_overdue: bool = Field(
        default=False,
        description="仅返回截止时间不晚于今天结束的任务",
    )
    include_deleted: bool = Field(default=False, description="是否包含软删除任务")

    @field_validator("due_from", "due_to")
    @classmethod
    def _aware_bounds(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value)
