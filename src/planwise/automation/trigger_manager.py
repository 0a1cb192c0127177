"""TriggerManager -- 事件中心 + 墙钟调度器 + 规则执行委托

- task.* / event.based 规则：按事件名绑定到事件中心，同一事件上的规则按 priority 降序执行
- time.based / schedule.based 规则：按 rule_id 维护一个调度句柄，到点触发后重新计算下一次
- 规则求值通过注入的 evaluator 完成，默认 evaluator 永不触发

执行路径上的异常（evaluator、监听器、执行记录持久化）一律记录日志后吞掉，
保证单条异常规则不会中断事件分发和调度。
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from contextvars import Context, ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from planwise.core.config import AutomationConfig, load_automation_config
from planwise.core.models import (
    SCHEDULED_TRIGGER_TYPES,
    AutomationRule,
    ScheduleConfig,
    TriggerType,
)

from .event_hub import EventHub, Listener
from .schedule import next_fire_time

log = structlog.get_logger()

# 当前调用链上正在执行的规则；动作回写任务时再次发出的事件不会重入同一规则
_executing_rules: ContextVar[frozenset[str]] = ContextVar("executing_rules", default=frozenset())

RuleEvaluatorFn = Callable[
    [AutomationRule, dict[str, Any]],
    dict[str, Any] | Awaitable[dict[str, Any]],
]


def noop_rule_evaluator(rule: AutomationRule, facts: dict[str, Any]) -> dict[str, Any]:
    """默认 evaluator：从不触发"""
    return {"triggered": False}


@dataclass
class ScheduleHandle:
    """定时规则的调度句柄

    cancelled 在 evaluator 调用前检查，取消后已武装的定时器不会再触发规则。
    """

    rule_id: str
    next_fire_at: datetime
    cancelled: bool = False
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    def cancel(self) -> None:
        self.cancelled = True
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class TriggerManager:
    """自动化触发管理器"""

    def __init__(
        self,
        config: AutomationConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        """
        Args:
            config: 自动化配置，默认从环境变量加载
            clock: 返回当前时间的函数（测试注入）
            tz: 调度使用的时区，默认取 config.timezone，再缺省为系统本地时区
        """
        self._config = config or load_automation_config()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tz = tz if tz is not None else self._config.tzinfo()

        self._hub = EventHub()
        self._evaluator: RuleEvaluatorFn = noop_rule_evaluator
        self._rule_service = None
        self._initialized = False

        # rule_id -> 已注册规则
        self._rules: dict[str, AutomationRule] = {}
        # rule_id -> 调度句柄（仅定时规则）
        self._handles: dict[str, ScheduleHandle] = {}
        # rule_id -> 绑定的事件名（仅事件规则）
        self._bindings: dict[str, str] = {}
        # 事件名 -> 事件中心上的分发器取消订阅函数
        self._dispatchers: dict[str, Callable[[], None]] = {}
        # 定时器触发后创建的后台任务（持有引用，避免被回收）
        self._background: set[asyncio.Task] = set()

    # ============================================================
    # 生命周期
    # ============================================================

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def hub(self) -> EventHub:
        return self._hub

    async def initialize(self, rule_evaluator: RuleEvaluatorFn | None = None) -> None:
        """初始化；已关联 RuleService 时注册全部启用规则

        重复调用只记录 warning。
        """
        if self._initialized:
            log.warning("trigger_manager_already_initialized")
            return
        if rule_evaluator is not None:
            self._evaluator = rule_evaluator
        self._initialized = True

        if self._rule_service is not None:
            for rule in await self._rule_service.list_rules(enabled=True):
                self.register_rule(rule)
        log.info(
            "trigger_manager_initialized",
            rules=len(self._rules),
            automation_enabled=self._config.enabled,
        )

    def cleanup(self) -> None:
        """取消全部调度句柄、解除规则绑定、移除全部监听器（幂等）"""
        for handle in self._handles.values():
            handle.cancel()
        for task in self._background:
            task.cancel()
        self._handles.clear()
        self._background.clear()
        self._bindings.clear()
        self._dispatchers.clear()
        self._rules.clear()
        self._hub.clear()
        self._initialized = False

    def attach_rule_service(self, rule_service) -> None:
        """关联 RuleService，用于持久化执行记录和初始化加载规则"""
        self._rule_service = rule_service

    def set_rule_evaluator(self, evaluator: RuleEvaluatorFn | None) -> None:
        """安装规则求值策略；None 恢复为默认 evaluator"""
        self._evaluator = evaluator or noop_rule_evaluator

    # ============================================================
    # 事件中心
    # ============================================================

    def on(self, event_name: str, callback: Listener) -> Callable[[], None]:
        """注册监听器，返回只移除本次注册的取消订阅函数"""
        return self._hub.on(event_name, callback)

    async def emit(self, event_name: str, payload: Any = None) -> None:
        """按注册顺序通知监听器；不会抛出异常"""
        await self._hub.emit(event_name, payload)

    async def emit_task_event(
        self,
        trigger_type: TriggerType | str,
        task: Any,
        previous_task: Any = None,
    ) -> None:
        """发出 task.* 事件，payload 为 {task, triggerType[, previousTask]}"""
        event_name = TriggerType(trigger_type).value
        payload: dict[str, Any] = {"task": task, "triggerType": event_name}
        if previous_task is not None:
            payload["previousTask"] = previous_task
        await self.emit(event_name, payload)

    async def emit_event(self, event_name: str, data: dict[str, Any] | None = None) -> None:
        """发出领域事件（如 journal.entry.created），payload 附带 triggerType"""
        await self.emit(event_name, {**(data or {}), "triggerType": event_name})

    # ============================================================
    # 规则注册
    # ============================================================

    @property
    def active_rule_ids(self) -> frozenset[str]:
        """当前持有调度句柄的规则 ID"""
        return frozenset(self._handles)

    @property
    def bound_rule_ids(self) -> frozenset[str]:
        """当前绑定到事件中心的规则 ID"""
        return frozenset(self._bindings)

    def get_handle(self, rule_id: str) -> ScheduleHandle | None:
        return self._handles.get(rule_id)

    def register_rule(self, rule: AutomationRule) -> None:
        """注册规则；禁用规则为 no-op，同一 rule_id 重复注册会替换旧句柄/绑定"""
        if not rule.enabled:
            log.debug("rule_register_skipped_disabled", rule_id=rule.rule_id)
            return
        if not self._config.enabled:
            log.debug("rule_register_skipped_automation_off", rule_id=rule.rule_id)
            return

        self.unregister_rule(rule.rule_id)

        if rule.trigger.type in SCHEDULED_TRIGGER_TYPES:
            self._rules[rule.rule_id] = rule
            self._arm(rule, self._clock())
            if rule.rule_id not in self._handles:
                self._rules.pop(rule.rule_id, None)
            return

        event_name = rule.event_name
        if not event_name:
            log.warning("rule_missing_event_name", rule_id=rule.rule_id)
            return
        self._rules[rule.rule_id] = rule
        self._bind(rule.rule_id, event_name)

    def unregister_rule(self, rule_id: str) -> None:
        """同步取消规则的调度句柄与事件绑定；未注册时为 no-op"""
        handle = self._handles.pop(rule_id, None)
        if handle is not None:
            handle.cancel()

        event_name = self._bindings.pop(rule_id, None)
        if event_name is not None and event_name not in self._bindings.values():
            unsubscribe = self._dispatchers.pop(event_name, None)
            if unsubscribe is not None:
                unsubscribe()

        if self._rules.pop(rule_id, None) is not None:
            log.debug("rule_unregistered", rule_id=rule_id)

    def _bind(self, rule_id: str, event_name: str) -> None:
        self._bindings[rule_id] = event_name
        if event_name in self._dispatchers:
            return

        async def dispatch(payload: Any) -> None:
            await self._dispatch(event_name, payload)

        self._dispatchers[event_name] = self._hub.on(event_name, dispatch)

    async def _dispatch(self, event_name: str, payload: Any) -> None:
        """按 priority 降序执行绑定到该事件的规则（同优先级保持注册顺序）"""
        rule_ids = [rid for rid, name in self._bindings.items() if name == event_name]
        rules = sorted(
            (self._rules[rid] for rid in rule_ids if rid in self._rules),
            key=lambda r: r.priority,
            reverse=True,
        )
        context = payload if isinstance(payload, dict) else {"data": payload}
        for rule in rules:
            # 前一条规则的动作可能已注销后续规则
            if self._bindings.get(rule.rule_id) != event_name:
                continue
            await self.execute_rule(rule, context)

    # ============================================================
    # 调度
    # ============================================================

    def _arm(self, rule: AutomationRule, after: datetime) -> None:
        """计算下一次触发时间并武装句柄"""
        try:
            schedule = ScheduleConfig.model_validate(rule.trigger.config.get("schedule") or {})
            next_at = next_fire_time(schedule, after, self._tz)
        except (ValidationError, ValueError) as e:
            log.error(
                "rule_schedule_invalid",
                rule_id=rule.rule_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return
        if next_at is None:
            log.warning("rule_schedule_exhausted", rule_id=rule.rule_id)
            return

        handle = ScheduleHandle(rule_id=rule.rule_id, next_fire_at=next_at)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            delay = max((next_at - self._clock()).total_seconds(), 0.0)
            # 定时器在空上下文中运行，不继承武装时所在规则的执行状态
            handle.timer = loop.call_later(delay, self._on_timer, handle, context=Context())

        self._handles[rule.rule_id] = handle
        log.debug("rule_scheduled", rule_id=rule.rule_id, next_fire_at=next_at.isoformat())

    def _on_timer(self, handle: ScheduleHandle) -> None:
        handle.timer = None
        if handle.cancelled:
            return
        task = asyncio.get_running_loop().create_task(self._fire(handle, self._clock()))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _fire(self, handle: ScheduleHandle, now: datetime) -> bool:
        """触发一次定时规则，然后以 now 为基准重新武装

        Returns:
            是否实际执行了规则
        """
        if handle.cancelled or self._handles.get(handle.rule_id) is not handle:
            return False
        # 句柄一次性使用：避免 fire_due_rules 与定时器重复触发
        if handle.timer is not None:
            handle.timer.cancel()
            handle.timer = None

        rule = self._rules[handle.rule_id]
        await self.execute_rule(
            rule,
            {
                "triggerType": rule.trigger.type.value,
                "scheduledAt": handle.next_fire_at.isoformat(),
            },
        )

        # 执行期间被注销或替换时不再重新武装
        if handle.cancelled or self._handles.get(handle.rule_id) is not handle:
            return True
        self._arm(self._rules[handle.rule_id], max(now, handle.next_fire_at))
        return True

    async def fire_due_rules(self, now: datetime | None = None) -> list[str]:
        """触发所有 next_fire_at <= now 的定时规则并重新武装

        Returns:
            本次触发的 rule_id 列表
        """
        now = now or self._clock()
        due = [h for h in self._handles.values() if not h.cancelled and h.next_fire_at <= now]
        due.sort(key=lambda h: (h.next_fire_at, -self._rules[h.rule_id].priority))

        fired: list[str] = []
        for handle in due:
            if await self._fire(handle, now):
                fired.append(handle.rule_id)
        return fired

    # ============================================================
    # 规则执行
    # ============================================================

    def build_facts_from_context(self, context: Any) -> dict[str, Any]:
        """从事件上下文投影出事实；未知结构只是缺少对应事实，不报错"""
        facts: dict[str, Any] = {}
        if not isinstance(context, dict):
            context = {}

        task = context.get("task")
        if isinstance(task, BaseModel):
            task = task.model_dump(mode="json")
        if isinstance(task, dict):
            facts["task"] = task
            facts["taskId"] = task.get("task_id")
            facts["taskStatus"] = task.get("status")
            facts["taskPriority"] = task.get("priority")

        if "exercise" in context:
            facts["exercise"] = context["exercise"]
        if "journalEntry" in context:
            facts["journalEntry"] = context["journalEntry"]

        facts["timestamp"] = self._clock().isoformat()
        return facts

    async def execute_rule(self, rule: AutomationRule, context: Any = None) -> bool:
        """求值并在触发时更新执行记录；任何异常都只记录日志

        Returns:
            evaluator 是否报告触发
        """
        if not rule.enabled:
            return False
        executing = _executing_rules.get()
        if rule.rule_id in executing:
            log.warning("rule_reentry_skipped", rule_id=rule.rule_id)
            return False
        token = _executing_rules.set(executing | {rule.rule_id})
        try:
            facts = self.build_facts_from_context(context)
            result = self._evaluator(rule, facts)
            if inspect.isawaitable(result):
                result = await result
            triggered = bool(result.get("triggered")) if isinstance(result, dict) else bool(result)
        except Exception as e:
            log.error(
                "rule_execution_failed",
                rule_id=rule.rule_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        finally:
            _executing_rules.reset(token)

        if not triggered:
            return False

        executed_at = self._clock()
        rule.execution_count += 1
        rule.last_executed_at = executed_at
        await log.ainfo(
            "rule_triggered",
            rule_id=rule.rule_id,
            execution_count=rule.execution_count,
        )

        if self._rule_service is not None:
            try:
                await self._rule_service.record_execution(rule.rule_id, executed_at)
            except Exception as e:
                log.error(
                    "rule_execution_record_failed",
                    rule_id=rule.rule_id,
                    error_type=type(e).__name__,
                )
        return True


_trigger_manager: TriggerManager | None = None


def get_trigger_manager() -> TriggerManager:
    """进程级单例"""
    global _trigger_manager
    if _trigger_manager is None:
        _trigger_manager = TriggerManager()
    return _trigger_manager


def reset_trigger_manager() -> None:
    """清理并丢弃进程级单例（测试使用）"""
    global _trigger_manager
    if _trigger_manager is not None:
        _trigger_manager.cleanup()
    _trigger_manager = None
