"""AutomationRule Domain Model

规则 = 触发器 + 条件树 + 有序动作列表。
触发器类型、动作类型都是封闭枚举，各自通过显式映射表绑定 config/params schema：
TRIGGER_CONFIG_SCHEMAS、ACTION_PARAM_SCHEMAS。
"""

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .enums import ActionType, ScheduleType, TriggerType
from .task import ensure_aware


class ScheduleConfig(BaseModel):
    """定时触发器的调度配置

    - daily: 每天 time（HH:mm）
    - weekly: days_of_week（0-6，0 = 周日）中每天的 time
    - monthly: 每月 day_of_month（缺省 1，超出当月天数时取月末）的 time
    - custom: 5 段 cron 表达式 expression
    """

    type: ScheduleType = Field(description="调度类型")
    time: str | None = Field(default=None, description="HH:mm 时刻")
    days_of_week: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("days_of_week", "daysOfWeek"),
        description="weekly 调度的星期列表，0 = 周日",
    )
    day_of_month: int | None = Field(
        default=None,
        ge=1,
        le=31,
        validation_alias=AliasChoices("day_of_month", "dayOfMonth"),
        description="monthly 调度的日期",
    )
    expression: str | None = Field(default=None, description="custom 调度的 cron 表达式")

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days_of_week 必须是 0-6 之间的整数")
        return sorted(set(value))


class ScheduledTriggerConfig(BaseModel):
    """time.based / schedule.based 触发器 config"""

    model_config = ConfigDict(extra="allow")

    schedule: ScheduleConfig


class EventTriggerConfig(BaseModel):
    """event.based 触发器 config：监听事件中心上的任意事件名"""

    model_config = ConfigDict(extra="allow")

    event: str = Field(min_length=1, description="事件名，如 journal.entry.created")


class TaskTriggerConfig(BaseModel):
    """task.* 触发器 config（无必填项）"""

    model_config = ConfigDict(extra="allow")


TRIGGER_CONFIG_SCHEMAS: dict[TriggerType, type[BaseModel]] = {
    TriggerType.TASK_CREATED: TaskTriggerConfig,
    TriggerType.TASK_UPDATED: TaskTriggerConfig,
    TriggerType.TASK_COMPLETED: TaskTriggerConfig,
    TriggerType.TIME_BASED: ScheduledTriggerConfig,
    TriggerType.SCHEDULE_BASED: ScheduledTriggerConfig,
    TriggerType.EVENT_BASED: EventTriggerConfig,
}


class _ActionParams(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ScheduleTaskParams(_ActionParams):
    """schedule.task：设置任务截止时间；task_id 缺省取事实中的 taskId"""

    task_id: str | None = Field(default=None, alias="taskId")
    due_date: datetime | None = Field(default=None, alias="dueDate")
    offset_days: int | None = Field(default=None, alias="offsetDays")


class CategorizeTaskParams(_ActionParams):
    """categorize.task：为任务打标签，可选同时设置 context"""

    task_id: str | None = Field(default=None, alias="taskId")
    category: str = Field(min_length=1)
    context: str | None = None


class SendNotificationParams(_ActionParams):
    """send.notification：发出通知事件"""

    message: str = Field(min_length=1)
    title: str | None = None


class GenerateReportParams(_ActionParams):
    """generate.report：请求生成报告"""

    report_type: str = Field(default="daily", alias="reportType")


class UpdateTaskParams(_ActionParams):
    """update.task：对任务应用 patch"""

    task_id: str | None = Field(default=None, alias="taskId")
    updates: dict[str, Any] = Field(default_factory=dict)


class CreateTaskParams(_ActionParams):
    """create.task：创建新任务"""

    task: dict[str, Any]


ACTION_PARAM_SCHEMAS: dict[ActionType, type[BaseModel]] = {
    ActionType.SCHEDULE_TASK: ScheduleTaskParams,
    ActionType.CATEGORIZE_TASK: CategorizeTaskParams,
    ActionType.SEND_NOTIFICATION: SendNotificationParams,
    ActionType.GENERATE_REPORT: GenerateReportParams,
    ActionType.UPDATE_TASK: UpdateTaskParams,
    ActionType.CREATE_TASK: CreateTaskParams,
}


class RuleTrigger(BaseModel):
    """规则触发器"""

    type: TriggerType = Field(default=TriggerType.TASK_CREATED, description="触发器类型")
    config: dict[str, Any] = Field(default_factory=dict, description="触发器配置")


class RuleAction(BaseModel):
    """规则动作"""

    type: ActionType = Field(description="动作类型")
    params: dict[str, Any] = Field(default_factory=dict, description="动作参数")


class AutomationRule(BaseModel):
    """AutomationRule 数据模型

    execution_count / last_executed_at 只由 TriggerManager 在成功执行后修改。
    """

    rule_id: str = Field(description="唯一标识，ULID 格式")
    name: str = Field(min_length=1, description="规则名称")
    description: str | None = Field(default=None, description="规则描述")
    enabled: bool = Field(default=True, description="是否启用")
    trigger: RuleTrigger = Field(default_factory=RuleTrigger, description="触发器")
    conditions: dict[str, Any] = Field(
        default_factory=lambda: {"all": []},
        description="条件树：{all: [...]} 或 {any: [...]}",
    )
    actions: list[RuleAction] = Field(default_factory=list, description="有序动作列表")
    priority: int = Field(default=0, description="优先级，越大越先执行")
    execution_count: int = Field(default=0, ge=0, description="成功执行次数")
    last_executed_at: datetime | None = Field(default=None, description="最近执行时间")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")

    @field_validator("last_executed_at", "created_at", "updated_at")
    @classmethod
    def _aware_datetimes(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value)

    @property
    def event_name(self) -> str | None:
        """规则监听的事件名；定时类规则返回 None"""
        if self.trigger.type == TriggerType.EVENT_BASED:
            return self.trigger.config.get("event")
        if self.trigger.type in (
            TriggerType.TASK_CREATED,
            TriggerType.TASK_UPDATED,
            TriggerType.TASK_COMPLETED,
        ):
            return self.trigger.type.value
        return None


class ValidationResult(BaseModel):
    """结构化校验结果"""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    rule: dict[str, Any] | None = Field(
        default=None,
        description="校验通过时为（清洗后的）规则数据",
    )
