"""TaskService -- 任务增删改查与关系维护

所有写操作在同一个 readwrite 事务内完成 "读取 -> 模拟 -> 校验 -> 写入"，
校验失败时不落盘任何变更。生命周期事件在事务提交之后发出，
因此规则动作可以安全地再次调用 TaskService。
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import structlog
from pydantic import ValidationError
from ulid import ULID

from planwise.core.exceptions import (
    CircularDependencyError,
    DuplicateTaskError,
    InvalidIdError,
    TaskNotFoundError,
    TaskValidationError,
    format_validation_errors,
)
from planwise.core.models import Task, TaskFilter, TaskStatus, TriggerType
from planwise.core.store import KeyRange, StoreGroup, utc_text
from planwise.core.text import sanitize_string

from .graph import RelationGraph

log = structlog.get_logger()

# 由系统维护、不接受调用方传入的字段
_SYSTEM_FIELDS = ("created_at", "updated_at", "completed_at", "deleted_at")

# update patch 中被忽略的字段
_IMMUTABLE_FIELDS = ("task_id", *_SYSTEM_FIELDS)

PatchBuilder = Callable[[Task], dict[str, Any] | None]


def _require_id(value: Any, field: str = "task_id") -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidIdError(field)
    return value


def _sanitize(data: dict[str, Any]) -> dict[str, Any]:
    """清洗用户输入的文本字段"""
    for field in ("title", "description"):
        if isinstance(data.get(field), str):
            data[field] = sanitize_string(data[field])
    if isinstance(data.get("tags"), list):
        data["tags"] = [
            sanitize_string(tag) if isinstance(tag, str) else tag for tag in data["tags"]
        ]
    return data


def _build_task(data: dict[str, Any]) -> Task:
    try:
        return Task.model_validate(data)
    except ValidationError as e:
        raise TaskValidationError(format_validation_errors(e)) from e


def _build_filter(task_filter: TaskFilter | dict[str, Any] | None) -> TaskFilter:
    if task_filter is None:
        return TaskFilter()
    if isinstance(task_filter, TaskFilter):
        return task_filter
    try:
        return TaskFilter.model_validate(task_filter)
    except ValidationError as e:
        raise TaskValidationError(format_validation_errors(e)) from e


class TaskService:
    """任务业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        trigger_manager=None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Args:
            store_group: 共享连接的 Store 实例组
            trigger_manager: 可选，用于发出 task.* 生命周期事件
            clock: 可选，返回当前时间的函数（测试注入）
        """
        self._stores = store_group
        self._trigger_manager = trigger_manager
        self._clock = clock or (lambda: datetime.now(UTC))

    def _now(self) -> datetime:
        return self._clock()

    # ============================================================
    # 创建 / 查询
    # ============================================================

    async def create(self, data: dict[str, Any]) -> Task:
        """创建任务

        Args:
            data: 任务字段；可选携带 task_id，否则自动生成 ULID

        Raises:
            TaskValidationError: 标题为空、枚举值非法等
            DuplicateTaskError: 指定的 task_id 已存在（包括软删除记录）
            TaskNotFoundError: 引用的 parent_id / dependencies 不存在
            CircularDependencyError: 引用了自身
        """
        data = _sanitize(dict(data))
        for field in _SYSTEM_FIELDS:
            data.pop(field, None)

        if "task_id" in data and data["task_id"] is not None:
            task_id = _require_id(data.pop("task_id"))
        else:
            data.pop("task_id", None)
            task_id = str(ULID())

        now = self._now()
        task = _build_task(
            {
                **data,
                "task_id": task_id,
                "created_at": now,
                "updated_at": now,
            }
        )
        if task.status == TaskStatus.COMPLETED:
            task = task.model_copy(update={"completed_at": now})

        async with self._stores.transaction():
            if await self._stores.task_records.get(task_id) is not None:
                raise DuplicateTaskError(task_id)
            if task.parent_id is not None or task.dependencies:
                detached = task.model_copy(update={"parent_id": None, "dependencies": []})
                await self._check_relations(detached, task, extra=detached)
            try:
                await self._stores.task_records.add(task.model_dump(mode="json"))
            except aiosqlite.IntegrityError as e:
                raise DuplicateTaskError(task_id) from e

        log.info("task_created", task_id=task_id, status=task.status.value)
        if self._trigger_manager is not None:
            await self._trigger_manager.emit_task_event(TriggerType.TASK_CREATED, task)
        return task

    async def get(self, task_id: str, include_deleted: bool = False) -> Task | None:
        """查询单个任务；不存在或已软删除（且未显式包含）时返回 None"""
        _require_id(task_id)
        async with self._stores.transaction(readonly=True):
            task = await self._load(task_id)
        if task is None or (task.is_deleted and not include_deleted):
            return None
        return task

    async def list_tasks(
        self, task_filter: TaskFilter | dict[str, Any] | None = None
    ) -> list[Task]:
        """按条件查询任务列表，条件之间按 AND 组合，按 created_at 倒序

        task_filter 可以是 TaskFilter 或同结构的 dict。

        Raises:
            TaskValidationError: dict 条件校验失败
        """
        f = _build_filter(task_filter)
        records = self._stores.task_records

        async with self._stores.transaction(readonly=True):
            # 选一个最有选择性的索引做初筛，其余条件在内存中过滤
            if f.status is not None:
                rows = await records.query_by_index("status", f.status.value)
            elif f.parent_id is not None:
                rows = await records.query_by_index("parent_id", f.parent_id)
            elif f.due_from is not None or f.due_to is not None or f.due_or_overdue:
                rows = await records.query_by_index(
                    "due_date",
                    KeyRange(lower=utc_text(f.due_from), upper=utc_text(self._due_upper(f))),
                )
            else:
                rows = await records.get_all()

        tasks = [Task.model_validate(row) for row in rows]
        tasks = [task for task in tasks if self._matches(task, f)]
        tasks.sort(key=lambda t: (t.created_at, t.task_id), reverse=True)
        return tasks

    def _due_upper(self, f: TaskFilter) -> datetime | None:
        """截止时间上界：due_to 与 "今天结束" 中较早者"""
        bounds = [b for b in (f.due_to, self._end_of_today() if f.due_or_overdue else None) if b]
        return min(bounds) if bounds else None

    def _end_of_today(self) -> datetime:
        local_now = self._now().astimezone()
        return local_now.replace(hour=23, minute=59, second=59, microsecond=999999)

    def _matches(self, task: Task, f: TaskFilter) -> bool:
        if task.is_deleted and not f.include_deleted:
            return False
        if f.status is not None and task.status != f.status:
            return False
        if f.priority is not None and task.priority != f.priority:
            return False
        if f.context is not None and task.context != f.context:
            return False
        if f.parent_id is not None and task.parent_id != f.parent_id:
            return False
        upper = self._due_upper(f)
        if f.due_from is not None or upper is not None:
            if task.due_date is None:
                return False
            if f.due_from is not None and task.due_date < f.due_from:
                return False
            if upper is not None and task.due_date > upper:
                return False
        return True

    # ============================================================
    # 更新
    # ============================================================

    async def update(self, task_id: str, patch: dict[str, Any]) -> Task:
        """部分更新任务

        task_id / created_at / updated_at / completed_at / deleted_at 会被忽略。
        进入 completed 时写入 completed_at，离开 completed 时清空。
        修改 parent_id / dependencies 时执行与关系操作相同的环检测。

        Raises:
            TaskNotFoundError: 任务不存在或已软删除
            TaskValidationError: patch 后的记录校验失败
            CircularDependencyError: 新关系会形成环
        """
        _require_id(task_id)
        cleaned = _sanitize({k: v for k, v in patch.items() if k not in _IMMUTABLE_FIELDS})
        return await self._apply(task_id, lambda current: cleaned)

    async def _apply(self, task_id: str, build_patch: PatchBuilder) -> Task:
        """事务内读取当前任务、生成 patch、校验并写入，提交后发出事件

        build_patch 返回 None 表示无需变更（不写入、不发事件）。
        """
        now = self._now()
        async with self._stores.transaction():
            current = await self._load(task_id)
            if current is None or current.is_deleted:
                raise TaskNotFoundError(task_id)
            patch = build_patch(current)
            if patch is None:
                return current

            updated = _build_task(
                {**current.model_dump(), **patch, "updated_at": now}
            )
            if updated.status == TaskStatus.COMPLETED:
                if current.status != TaskStatus.COMPLETED or current.completed_at is None:
                    updated = updated.model_copy(update={"completed_at": now})
            elif updated.completed_at is not None:
                updated = updated.model_copy(update={"completed_at": None})

            await self._check_relations(current, updated)
            await self._stores.task_records.put(updated.model_dump(mode="json"))

        log.info(
            "task_updated",
            task_id=task_id,
            fields=sorted(patch),
            status=updated.status.value,
        )
        await self._emit_updated(updated, current)
        return updated

    async def _emit_updated(self, task: Task, previous: Task) -> None:
        if self._trigger_manager is None:
            return
        await self._trigger_manager.emit_task_event(
            TriggerType.TASK_UPDATED, task, previous_task=previous
        )
        if task.status == TaskStatus.COMPLETED and previous.status != TaskStatus.COMPLETED:
            await self._trigger_manager.emit_task_event(TriggerType.TASK_COMPLETED, task)

    async def add_time_spent(self, task_id: str, minutes: int) -> Task:
        """在当前 time_spent 上原子累加分钟数"""
        _require_id(task_id)
        return await self._apply(
            task_id,
            lambda current: {"time_spent": current.time_spent + minutes},
        )

    # ============================================================
    # 删除生命周期
    # ============================================================

    async def soft_delete(self, task_id: str) -> Task:
        """软删除：写入 deleted_at 并置为 cancelled

        幂等：已删除的任务原样返回，不会刷新 deleted_at。
        """
        _require_id(task_id)
        now = self._now()
        async with self._stores.transaction():
            current = await self._load(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            if current.is_deleted:
                return current
            deleted = current.model_copy(
                update={
                    "deleted_at": now,
                    "status": TaskStatus.CANCELLED,
                    "completed_at": None,
                    "updated_at": now,
                }
            )
            await self._stores.task_records.put(deleted.model_dump(mode="json"))

        log.info("task_soft_deleted", task_id=task_id)
        return deleted

    async def restore(self, task_id: str) -> Task:
        """恢复软删除任务：清空 deleted_at，状态重置为 pending；未删除时原样返回"""
        _require_id(task_id)
        now = self._now()
        async with self._stores.transaction():
            current = await self._load(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            if not current.is_deleted:
                return current
            restored = current.model_copy(
                update={
                    "deleted_at": None,
                    "status": TaskStatus.PENDING,
                    "updated_at": now,
                }
            )
            await self._stores.task_records.put(restored.model_dump(mode="json"))

        log.info("task_restored", task_id=task_id)
        return restored

    async def hard_delete(self, task_id: str) -> None:
        """永久删除任务

        不做级联：依赖它的任务保留悬空引用，子任务保留原 parent_id。
        """
        _require_id(task_id)
        async with self._stores.transaction():
            deleted = await self._stores.task_records.delete(task_id)
        if not deleted:
            raise TaskNotFoundError(task_id)
        log.warning("task_hard_deleted", task_id=task_id)

    async def purge_deleted(self) -> int:
        """永久删除所有软删除任务，返回删除数量"""
        async with self._stores.transaction():
            rows = await self._stores.task_records.query_by_index("deleted_at", KeyRange())
            for row in rows:
                await self._stores.task_records.delete(row["task_id"])
        log.info("tasks_purged", count=len(rows))
        return len(rows)

    # ============================================================
    # 依赖 / 子任务
    # ============================================================

    async def add_dependency(self, task_id: str, depends_on_id: str) -> Task:
        """让 task_id 依赖 depends_on_id（幂等）

        Raises:
            CircularDependencyError: 自依赖或会形成环
            TaskNotFoundError: 任一任务不存在或已软删除
        """
        _require_id(task_id)
        _require_id(depends_on_id, "depends_on_id")
        if task_id == depends_on_id:
            raise CircularDependencyError(f"任务不能依赖自身: {task_id}", cycle=[task_id])

        def build(current: Task) -> dict[str, Any] | None:
            if depends_on_id in current.dependencies:
                return None
            return {"dependencies": [*current.dependencies, depends_on_id]}

        return await self._apply(task_id, build)

    async def remove_dependency(self, task_id: str, depends_on_id: str) -> Task:
        """移除依赖；依赖本就不存在时原样返回"""
        _require_id(task_id)
        _require_id(depends_on_id, "depends_on_id")

        def build(current: Task) -> dict[str, Any] | None:
            if depends_on_id not in current.dependencies:
                return None
            return {"dependencies": [d for d in current.dependencies if d != depends_on_id]}

        return await self._apply(task_id, build)

    async def add_subtask(self, child_id: str, parent_id: str) -> Task:
        """把 child_id 设为 parent_id 的子任务（替换原父任务）"""
        _require_id(child_id, "child_id")
        _require_id(parent_id, "parent_id")
        if child_id == parent_id:
            raise CircularDependencyError(
                f"任务不能成为自身的父任务: {child_id}", cycle=[child_id]
            )

        def build(current: Task) -> dict[str, Any] | None:
            if current.parent_id == parent_id:
                return None
            return {"parent_id": parent_id}

        return await self._apply(child_id, build)

    async def remove_subtask(self, child_id: str) -> Task:
        """让 child_id 成为顶层任务；本就没有父任务时原样返回"""
        _require_id(child_id, "child_id")
        return await self._apply(
            child_id,
            lambda current: None if current.parent_id is None else {"parent_id": None},
        )

    async def move_subtask(self, child_id: str, new_parent_id: str | None) -> Task:
        """移动子任务到新父任务；new_parent_id 为 None 时等同 remove_subtask"""
        if new_parent_id is None:
            return await self.remove_subtask(child_id)
        return await self.add_subtask(child_id, new_parent_id)

    async def get_subtasks(self, parent_id: str, include_deleted: bool = False) -> list[Task]:
        """直接子任务，按 created_at 正序"""
        _require_id(parent_id, "parent_id")
        async with self._stores.transaction(readonly=True):
            rows = await self._stores.task_records.query_by_index("parent_id", parent_id)
        tasks = [Task.model_validate(row) for row in rows]
        tasks = [t for t in tasks if include_deleted or not t.is_deleted]
        tasks.sort(key=lambda t: (t.created_at, t.task_id))
        return tasks

    async def get_all_dependencies(self, task_id: str) -> list[Task]:
        """直接与间接依赖的全部任务（广度优先顺序，跳过悬空引用与软删除任务）"""
        _require_id(task_id)
        tasks = await self._all_tasks()
        by_id = {t.task_id: t for t in tasks}
        if task_id not in by_id:
            raise TaskNotFoundError(task_id)
        graph = RelationGraph(tasks)
        return [
            by_id[tid]
            for tid in graph.transitive_dependencies(task_id)
            if tid in by_id and not by_id[tid].is_deleted
        ]

    async def get_dependents(self, task_id: str) -> list[Task]:
        """直接依赖 task_id 的未删除任务"""
        _require_id(task_id)
        tasks = await self._all_tasks()
        by_id = {t.task_id: t for t in tasks}
        graph = RelationGraph(tasks)
        return [
            by_id[tid]
            for tid in graph.dependents(task_id)
            if tid in by_id and not by_id[tid].is_deleted
        ]

    # ============================================================
    # 内部
    # ============================================================

    async def _load(self, task_id: str) -> Task | None:
        row = await self._stores.task_records.get(task_id)
        if row is None:
            return None
        return Task.model_validate(row)

    async def _all_tasks(self) -> list[Task]:
        rows = await self._stores.task_records.get_all()
        return [Task.model_validate(row) for row in rows]

    async def _check_relations(
        self,
        before: Task,
        after: Task,
        extra: Task | None = None,
    ) -> None:
        """在关系快照上模拟 before -> after 的关系变化并做环检测

        新引用的任务必须存在且未软删除；快照本身包含软删除任务。
        extra 用于尚未落盘的新任务。
        """
        added = [d for d in after.dependencies if d not in before.dependencies]
        removed = [d for d in before.dependencies if d not in after.dependencies]
        parent_changed = after.parent_id != before.parent_id
        if not (added or removed or parent_changed):
            return

        tasks = await self._all_tasks()
        if extra is not None:
            tasks.append(extra)
        by_id = {t.task_id: t for t in tasks}
        graph = RelationGraph(tasks)

        def require_live(ref_id: str) -> None:
            ref = by_id.get(ref_id)
            if ref is None or ref.is_deleted:
                raise TaskNotFoundError(ref_id)

        for dep in removed:
            graph.remove_dependency(after.task_id, dep)
        if parent_changed:
            if after.parent_id is not None:
                require_live(after.parent_id)
            graph.set_parent(after.task_id, after.parent_id)
        for dep in added:
            require_live(dep)
            graph.add_dependency(after.task_id, dep)
