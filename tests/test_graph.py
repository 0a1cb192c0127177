"""RelationGraph 单元测试 -- 依赖边与父子边组成的联合图环检测"""

from datetime import UTC, datetime

import pytest
from planwise.core.exceptions import CircularDependencyError
from planwise.core.models import Task
from planwise.tasks.graph import RelationGraph

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _task(task_id: str, deps: tuple[str, ...] = (), parent: str | None = None) -> Task:
    return Task(
        task_id=task_id,
        title=task_id,
        dependencies=list(deps),
        parent_id=parent,
        created_at=NOW,
        updated_at=NOW,
    )


class TestDependencyEdges:
    def test_self_dependency(self):
        graph = RelationGraph([_task("a")])
        with pytest.raises(CircularDependencyError) as exc_info:
            graph.add_dependency("a", "a")
        assert exc_info.value.cycle == ["a"]

    def test_two_node_cycle(self):
        graph = RelationGraph([_task("a", deps=("b",)), _task("b")])
        with pytest.raises(CircularDependencyError) as exc_info:
            graph.add_dependency("b", "a")
        assert exc_info.value.cycle == ["b", "a", "b"]

    def test_diamond_is_acyclic(self):
        """a -> b, a -> c, b -> d 之后 c -> d 合法"""
        graph = RelationGraph(
            [_task("a", deps=("b", "c")), _task("b", deps=("d",)), _task("c"), _task("d")]
        )
        graph.add_dependency("c", "d")
        assert graph.transitive_dependencies("a") == ["b", "c", "d"]

    def test_failed_add_leaves_graph_unchanged(self):
        graph = RelationGraph([_task("a", deps=("b",)), _task("b")])
        with pytest.raises(CircularDependencyError):
            graph.add_dependency("b", "a")
        assert graph.dependents("a") == []

    def test_dangling_reference_has_no_edges(self):
        """悬空引用不参与遍历"""
        graph = RelationGraph([_task("a", deps=("ghost",)), _task("b")])
        assert "ghost" not in graph
        graph.add_dependency("b", "a")
        assert graph.transitive_dependencies("b") == ["a", "ghost"]


class TestParentEdges:
    def test_self_parent(self):
        graph = RelationGraph([_task("a")])
        with pytest.raises(CircularDependencyError):
            graph.set_parent("a", "a")

    def test_descendant_as_parent_rejected(self):
        graph = RelationGraph([_task("g"), _task("p", parent="g"), _task("c", parent="p")])
        with pytest.raises(CircularDependencyError) as exc_info:
            graph.set_parent("g", "c")
        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1] == "g"

    def test_reparent_detaches_old_parent(self):
        graph = RelationGraph([_task("p1"), _task("p2"), _task("c", parent="p1")])
        graph.set_parent("c", "p2")
        # c 不再是 p1 的后代，p1 可以挂到 c 下
        graph.set_parent("p1", "c")
        with pytest.raises(CircularDependencyError):
            graph.set_parent("p2", "c")

    def test_clear_parent(self):
        graph = RelationGraph([_task("p"), _task("c", parent="p")])
        graph.set_parent("c", None)
        graph.set_parent("p", "c")


class TestCrossGraphCycles:
    """依赖与父子关系组合后才闭合的环"""

    def test_ancestor_dependency_on_descendant(self):
        graph = RelationGraph([_task("g"), _task("p", parent="g"), _task("c", parent="p")])
        with pytest.raises(CircularDependencyError):
            graph.add_dependency("g", "c")
        with pytest.raises(CircularDependencyError):
            graph.add_dependency("c", "g")

    def test_parent_link_after_dependency(self):
        """x -> y 依赖存在时，把 y 挂到 x 下会闭合成环"""
        graph = RelationGraph([_task("x", deps=("y",)), _task("y")])
        with pytest.raises(CircularDependencyError):
            graph.set_parent("y", "x")
        with pytest.raises(CircularDependencyError):
            graph.set_parent("x", "y")

    def test_cycle_through_dependency_and_parentage(self):
        """a -> b 依赖，b 是 c 的父任务；c -> a 依赖闭合 a -> b -> c -> a"""
        graph = RelationGraph([_task("a", deps=("b",)), _task("b"), _task("c", parent="b")])
        with pytest.raises(CircularDependencyError) as exc_info:
            graph.add_dependency("c", "a")
        assert exc_info.value.cycle == ["c", "a", "b", "c"]

    def test_siblings_and_cousins_allowed(self):
        """兄弟、表亲之间的依赖不构成环"""
        graph = RelationGraph(
            [
                _task("g"),
                _task("p1", parent="g"),
                _task("p2", parent="g"),
                _task("c1", parent="p1"),
                _task("c2", parent="p2"),
            ]
        )
        graph.add_dependency("c1", "c2")
        graph.add_dependency("p1", "p2")
        assert graph.dependents("c2") == ["c1"]

    def test_dependency_chain_through_child_rejected(self):
        """p 是 c 的父任务且 c -> x；x -> p 经父子边闭合成环"""
        graph = RelationGraph([_task("p"), _task("c", deps=("x",), parent="p"), _task("x")])
        with pytest.raises(CircularDependencyError) as exc_info:
            graph.add_dependency("x", "p")
        assert exc_info.value.cycle == ["x", "p", "c", "x"]
