"""Planwise 异常体系

所有领域失败都是带稳定机器可读 code 的具名异常，不抛裸字符串。
TaskService / TimeTracker 快速失败（由调用方处理）；
TriggerManager 吞掉规则求值器与监听器异常，仅记录日志。
"""

from pydantic import ValidationError


class PlanwiseError(Exception):
    """Planwise 基础异常"""

    code: str = "PLANWISE_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        """
        Args:
            message: 错误描述
            code: 覆盖类级别的默认错误码
        """
        super().__init__(message)
        if code is not None:
            self.code = code


class InvalidIdError(PlanwiseError):
    """记录 ID 为空或类型错误"""

    code = "INVALID_ID"

    def __init__(self, field: str = "task_id") -> None:
        super().__init__(f"{field} 必须是非空字符串")
        self.field = field


class TaskNotFoundError(PlanwiseError):
    """任务不存在（或已软删除且未显式包含）"""

    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"任务不存在: {task_id}")
        self.task_id = task_id


class DuplicateTaskError(PlanwiseError):
    """调用方指定的 task_id 已被占用"""

    code = "DUPLICATE_TASK"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"任务 ID 已存在: {task_id}")
        self.task_id = task_id


class CircularDependencyError(PlanwiseError):
    """新增依赖/父子关系会形成环

    cycle 为检测到的环路径（首尾为同一节点，自环时只有一个节点）。
    """

    code = "CIRCULAR_DEPENDENCY"

    def __init__(self, message: str, cycle: list[str] | None = None) -> None:
        super().__init__(message)
        self.cycle = cycle or []


class NoActiveTimerError(PlanwiseError):
    """当前没有正在运行的计时器"""

    code = "NO_ACTIVE_TIMER"

    def __init__(self) -> None:
        super().__init__("当前没有正在运行的计时器")


class TimerMismatchError(PlanwiseError):
    """正在运行的计时器属于另一个任务"""

    code = "TIMER_MISMATCH"

    def __init__(self, active_task_id: str, requested_task_id: str) -> None:
        super().__init__(
            f"计时器正在为任务 {active_task_id} 运行，而不是 {requested_task_id}"
        )
        self.active_task_id = active_task_id
        self.requested_task_id = requested_task_id


class InvalidTimeEntryError(PlanwiseError):
    """手动工时录入值非法（非正数、非有限数或超过一天）"""

    code = "INVALID_TIME_ENTRY"


class DomainValidationError(PlanwiseError):
    """记录结构校验失败

    errors 保存全部校验错误信息，message 为其拼接。
    """

    code = "VALIDATION_ERROR"

    def __init__(self, errors: list[str], subject: str = "记录") -> None:
        super().__init__(f"{subject}校验失败: {'; '.join(errors)}")
        self.errors = errors


class TaskValidationError(DomainValidationError):
    """Task 校验失败"""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(errors, subject="Task ")


class RuleValidationError(DomainValidationError):
    """AutomationRule 校验失败"""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(errors, subject="AutomationRule ")


class RuleNotFoundError(PlanwiseError):
    """自动化规则不存在"""

    code = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"自动化规则不存在: {rule_id}")
        self.rule_id = rule_id


def format_validation_errors(exc: ValidationError) -> list[str]:
    """pydantic ValidationError -> 可读错误信息列表（"字段: 原因"）"""
    messages: list[str] = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error["loc"])
        messages.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return messages
