"""规则动作分发

每种 ActionType 对应一个处理函数；涉及任务的动作回调 TaskService。
每个动作执行后都会在事件中心发出 action.<type> 事件，
单个动作失败只记录日志，不影响后续动作。
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from planwise.core.exceptions import TaskNotFoundError
from planwise.core.models import (
    ACTION_PARAM_SCHEMAS,
    ActionType,
    AutomationRule,
    RuleAction,
)
from planwise.tasks.task_service import TaskService

log = structlog.get_logger()

ActionHandler = Callable[[Any, dict[str, Any]], Awaitable[Any]]


class ActionDispatcher:
    """动作分发器"""

    def __init__(
        self,
        task_service: TaskService,
        trigger_manager=None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._tasks = task_service
        self._trigger_manager = trigger_manager
        self._clock = clock or (lambda: datetime.now(UTC))
        self._handlers: dict[ActionType, ActionHandler] = {
            ActionType.SCHEDULE_TASK: self._schedule_task,
            ActionType.CATEGORIZE_TASK: self._categorize_task,
            ActionType.SEND_NOTIFICATION: self._send_notification,
            ActionType.GENERATE_REPORT: self._generate_report,
            ActionType.UPDATE_TASK: self._update_task,
            ActionType.CREATE_TASK: self._create_task,
        }

    async def dispatch_all(
        self,
        rule: AutomationRule,
        facts: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """按顺序执行规则的全部动作，返回每个动作的执行结果"""
        results: list[dict[str, Any]] = []
        for action in rule.actions:
            try:
                result = await self.dispatch(action, facts)
                results.append({"type": action.type.value, "ok": True, "result": result})
            except Exception as e:
                log.error(
                    "rule_action_failed",
                    rule_id=rule.rule_id,
                    action_type=action.type.value,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                results.append({"type": action.type.value, "ok": False, "error": str(e)})
                continue
            if self._trigger_manager is not None:
                await self._trigger_manager.emit(
                    f"action.{action.type.value}",
                    {
                        "action": action.model_dump(mode="json"),
                        "ruleId": rule.rule_id,
                        "facts": facts,
                        "result": result,
                    },
                )
        return results

    async def dispatch(self, action: RuleAction, facts: dict[str, Any]) -> Any:
        """执行单个动作"""
        params = ACTION_PARAM_SCHEMAS[action.type].model_validate(action.params)
        return await self._handlers[action.type](params, facts)

    @staticmethod
    def _target_task_id(params: Any, facts: dict[str, Any]) -> str:
        task_id = getattr(params, "task_id", None) or facts.get("taskId")
        if not task_id:
            raise ValueError("动作缺少 taskId，且事实中也没有 taskId")
        return task_id

    async def _categorize_task(self, params, facts: dict[str, Any]) -> dict[str, Any]:
        task_id = self._target_task_id(params, facts)
        task = await self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        patch: dict[str, Any] = {"tags": [*task.tags, params.category]}
        if params.context:
            patch["context"] = params.context
        updated = await self._tasks.update(task_id, patch)
        return {"taskId": task_id, "tags": updated.tags, "context": updated.context.value}

    async def _schedule_task(self, params, facts: dict[str, Any]) -> dict[str, Any]:
        task_id = self._target_task_id(params, facts)
        if params.due_date is not None:
            due_date = params.due_date
        elif params.offset_days is not None:
            due_date = self._clock() + timedelta(days=params.offset_days)
        else:
            raise ValueError("schedule.task 需要 dueDate 或 offsetDays")
        updated = await self._tasks.update(task_id, {"due_date": due_date})
        return {"taskId": task_id, "dueDate": updated.due_date.isoformat()}

    async def _update_task(self, params, facts: dict[str, Any]) -> dict[str, Any]:
        task_id = self._target_task_id(params, facts)
        await self._tasks.update(task_id, params.updates)
        return {"taskId": task_id, "fields": sorted(params.updates)}

    async def _create_task(self, params, facts: dict[str, Any]) -> dict[str, Any]:
        task = await self._tasks.create(params.task)
        return {"taskId": task.task_id}

    async def _send_notification(self, params, facts: dict[str, Any]) -> dict[str, Any]:
        # 通知的投递由 action.send.notification 的监听器完成
        return {"title": params.title, "message": params.message}

    async def _generate_report(self, params, facts: dict[str, Any]) -> dict[str, Any]:
        return {"reportType": params.report_type, "requestedAt": self._clock().isoformat()}
