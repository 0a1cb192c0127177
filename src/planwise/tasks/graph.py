"""任务关系图 -- 依赖边 + 父子边的统一邻接视图

三种移动：
- dep:  任务 -> 它依赖的任务
- up:   子任务 -> 父任务
- down: 父任务 -> 子任务

遍历状态为 (节点, 相位)。相位记录上一步的移动方向：
刚向上走过（RISING）就不能立刻向下，刚向下走过（SINKING）就不能立刻向上，
dep 移动把相位重置为 FREE。这样 "兄弟/表亲之间互相依赖" 不构成环，
而经依赖和/或父子关系闭合的路径都会被判定为环。

图中包含软删除任务；指向不存在任务的 ID 没有出边。
"""

from collections import deque
from collections.abc import Iterable
from enum import Enum

from planwise.core.exceptions import CircularDependencyError
from planwise.core.models import Task


class Phase(Enum):
    FREE = "free"
    RISING = "rising"
    SINKING = "sinking"


_State = tuple[str, Phase]


class RelationGraph:
    """内存中的任务关系快照，用于在写入前模拟并校验新边"""

    def __init__(self, tasks: Iterable[Task]) -> None:
        self._deps: dict[str, list[str]] = {}
        self._parent: dict[str, str] = {}
        self._children: dict[str, list[str]] = {}
        for task in tasks:
            self._deps[task.task_id] = list(task.dependencies)
            if task.parent_id is not None:
                self._parent[task.task_id] = task.parent_id
                self._children.setdefault(task.parent_id, []).append(task.task_id)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._deps

    # ============================================================
    # 模拟变更
    # ============================================================

    def add_dependency(self, task_id: str, depends_on_id: str) -> None:
        """校验并在快照中加入依赖边 task_id -> depends_on_id

        Raises:
            CircularDependencyError: 自依赖或新边会闭合成环
        """
        if task_id == depends_on_id:
            raise CircularDependencyError(
                f"任务不能依赖自身: {task_id}", cycle=[task_id]
            )
        path = self._search((depends_on_id, Phase.FREE), task_id, forbidden=None)
        if path is not None:
            raise CircularDependencyError(
                f"添加依赖 {task_id} -> {depends_on_id} 会形成环",
                cycle=[task_id, *path],
            )
        deps = self._deps.setdefault(task_id, [])
        if depends_on_id not in deps:
            deps.append(depends_on_id)

    def remove_dependency(self, task_id: str, depends_on_id: str) -> None:
        deps = self._deps.get(task_id, [])
        if depends_on_id in deps:
            deps.remove(depends_on_id)

    def set_parent(self, child_id: str, parent_id: str | None) -> None:
        """校验并在快照中把 child_id 挂到 parent_id 下（None 表示脱离父任务）

        校验前先移除 child_id 原有的父链接。

        Raises:
            CircularDependencyError: 自为父任务或新父子链接会闭合成环
        """
        if child_id == parent_id:
            raise CircularDependencyError(
                f"任务不能成为自身的父任务: {child_id}", cycle=[child_id]
            )
        self._detach(child_id)
        if parent_id is None:
            return

        # 经由新链接向上：c -up-> p ... -> c，且到达 c 时不能处于下行相位
        path = self._search((parent_id, Phase.RISING), child_id, forbidden=Phase.SINKING)
        if path is not None:
            raise CircularDependencyError(
                f"将 {child_id} 设为 {parent_id} 的子任务会形成环",
                cycle=[child_id, *path],
            )
        # 经由新链接向下：p -down-> c ... -> p，且到达 p 时不能处于上行相位
        path = self._search((child_id, Phase.SINKING), parent_id, forbidden=Phase.RISING)
        if path is not None:
            raise CircularDependencyError(
                f"将 {child_id} 设为 {parent_id} 的子任务会形成环",
                cycle=[parent_id, *path],
            )

        self._parent[child_id] = parent_id
        self._children.setdefault(parent_id, []).append(child_id)

    def _detach(self, child_id: str) -> None:
        old_parent = self._parent.pop(child_id, None)
        if old_parent is not None:
            siblings = self._children.get(old_parent, [])
            if child_id in siblings:
                siblings.remove(child_id)

    # ============================================================
    # 查询
    # ============================================================

    def transitive_dependencies(self, task_id: str) -> list[str]:
        """task_id 直接和间接依赖的全部任务（广度优先顺序，不含自身）"""
        seen: set[str] = {task_id}
        order: list[str] = []
        queue = deque(self._deps.get(task_id, []))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            order.append(current)
            queue.extend(self._deps.get(current, []))
        return order

    def dependents(self, task_id: str) -> list[str]:
        """直接依赖 task_id 的任务"""
        return [tid for tid, deps in self._deps.items() if task_id in deps]

    # ============================================================
    # 遍历
    # ============================================================

    def _moves(self, state: _State) -> Iterable[_State]:
        node, phase = state
        for dep in self._deps.get(node, []):
            yield dep, Phase.FREE
        if phase != Phase.SINKING and node in self._parent:
            yield self._parent[node], Phase.RISING
        if phase != Phase.RISING:
            for child in self._children.get(node, []):
                yield child, Phase.SINKING

    def _search(
        self,
        start: _State,
        goal: str,
        forbidden: Phase | None,
    ) -> list[str] | None:
        """从 start 出发广度优先搜索 goal

        forbidden 为到达 goal 时不允许的相位。
        找到时返回节点路径（起点到 goal），否则返回 None。
        """
        if start[0] == goal and start[1] != forbidden:
            return [goal]

        came_from: dict[_State, _State | None] = {start: None}
        queue: deque[_State] = deque([start])
        while queue:
            state = queue.popleft()
            for nxt in self._moves(state):
                if nxt in came_from:
                    continue
                came_from[nxt] = state
                if nxt[0] == goal and nxt[1] != forbidden:
                    return self._path(came_from, nxt)
                queue.append(nxt)
        return None

    @staticmethod
    def _path(came_from: dict[_State, _State | None], end: _State) -> list[str]:
        path: list[str] = []
        state: _State | None = end
        while state is not None:
            path.append(state[0])
            state = came_from[state]
        path.reverse()
        return path
