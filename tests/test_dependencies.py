"""
依赖图校验器测试 — 加边环预检、传递依赖/被依赖、关键路径、TaskGraph 不变量。

运行方式:
    python -m pytest tests/test_dependencies.py -v

所有测试都基于内存快照，不依赖任何外部存储。
"""

from __future__ import annotations

import random

import pytest

from engine.dependencies import (
    DependencyValidator,
    LookupTaskView,
    TaskGraph,
    critical_path,
    transitive_dependencies,
    transitive_dependents,
    would_create_cycle_if_depends_on,
)
from engine.errors import GraphLookupError
from engine.graph import has_cycle
from schema import TaskRecord, TaskStatus


# ======================================================================
# Helper: 由 blocked_by 映射构建 blocks/blocked_by 互逆的任务快照
# ======================================================================


def _build_records(blocked_by: dict[str, list[str]], statuses: dict[str, TaskStatus] | None = None) -> list[TaskRecord]:
    statuses = statuses or {}
    blocks: dict[str, list[str]] = {tid: [] for tid in blocked_by}
    for tid, prerequisites in blocked_by.items():
        for pre in prerequisites:
            if pre in blocks:
                blocks[pre].append(tid)
    return [
        TaskRecord(
            id=tid,
            title=f"Task {tid}",
            status=statuses.get(tid, TaskStatus.BACKLOG),
            blocked_by=list(prerequisites),
            blocks=blocks[tid],
        )
        for tid, prerequisites in blocked_by.items()
    ]


def _build_graph(blocked_by: dict[str, list[str]], statuses: dict[str, TaskStatus] | None = None) -> TaskGraph:
    return TaskGraph(_build_records(blocked_by, statuses))


def _random_dag(rng: random.Random, size: int, density: float) -> TaskGraph:
    """随机生成无环任务图：只允许拓扑序靠后的任务依赖靠前的任务."""
    ids = [f"t{i}" for i in range(size)]
    order = ids[:]
    rng.shuffle(order)
    blocked_by: dict[str, list[str]] = {tid: [] for tid in ids}
    for i, later in enumerate(order):
        for earlier in order[:i]:
            if rng.random() < density:
                blocked_by[later].append(earlier)
    return _build_graph(blocked_by)


# ======================================================================
# Test 1: 加边环预检
# ======================================================================


class TestWouldCreateCycle:

    def test_self_dependency_is_always_a_cycle(self):
        graph = _build_graph({"a": [], "b": ["a"]})
        for tid in ("a", "b", "missing"):
            assert would_create_cycle_if_depends_on(graph, tid, tid) is True

    def test_chain(self):
        """c 依赖 b，b 依赖 a：让 a 依赖 c 会成环，反之不会."""
        graph = _build_graph({"a": [], "b": ["a"], "c": ["b"]})
        assert would_create_cycle_if_depends_on(graph, "a", "c") is True
        assert would_create_cycle_if_depends_on(graph, "c", "a") is False

    def test_unrelated_tasks(self):
        graph = _build_graph({"a": [], "b": [], "c": ["a"]})
        assert would_create_cycle_if_depends_on(graph, "b", "c") is False

    def test_existing_two_node_cycle_detected(self):
        """场景 1: A blocks B 且 B blocks A 时 has_cycle 为 True."""
        graph = TaskGraph([
            TaskRecord(id="A", blocked_by=["B"], blocks=["B"]),
            TaskRecord(id="B", blocked_by=["A"], blocks=["A"]),
        ])
        assert graph.has_cycle() is True

    def test_dangling_reference_does_not_fail(self):
        graph = _build_graph({"a": ["ghost"], "b": ["a"]})
        assert would_create_cycle_if_depends_on(graph, "a", "b") is True
        assert would_create_cycle_if_depends_on(graph, "b", "ghost") is False

    def test_deleted_task_is_not_a_path(self):
        """B 的 blocked_by 中残留已删除的 X：让 X 依赖 B 不应被判为成环."""
        graph = TaskGraph([TaskRecord(id="B", blocked_by=["X"])])
        assert would_create_cycle_if_depends_on(graph, "X", "B") is False

    @pytest.mark.parametrize("seed", range(8))
    def test_precheck_matches_has_cycle(self, seed):
        """
        性质：预检结果与「实际加边后 has_cycle」完全一致（可靠性 + 完备性）。
        task u 依赖 v 等价于新增 blocks 边 v -> u。
        """
        rng = random.Random(seed)
        graph = _random_dag(rng, size=7, density=0.3)
        ids = graph.node_ids
        assert graph.has_cycle() is False

        for u in ids:
            for v in ids:
                def successors(node_id, u=u, v=v):
                    extra = [u] if node_id == v else []
                    return graph.successors_of(node_id) + extra

                expected = has_cycle(ids, successors)
                assert would_create_cycle_if_depends_on(graph, u, v) is expected, f"{u} 依赖 {v}"


# ======================================================================
# Test 2: 传递闭包
# ======================================================================


class TestTransitiveClosure:

    def test_dependencies_and_dependents(self):
        graph = _build_graph({"a": [], "b": ["a"], "c": ["b"], "d": ["a"], "e": []})
        assert transitive_dependencies(graph, "c") == {"a", "b"}
        assert transitive_dependencies(graph, "a") == set()
        assert transitive_dependents(graph, "a") == {"b", "c", "d"}
        assert transitive_dependents(graph, "e") == set()

    def test_dangling_reference_skipped(self):
        """悬空引用不贡献任何闭包成员."""
        graph = _build_graph({"a": [], "b": ["a", "ghost"], "c": ["b"]})
        assert transitive_dependencies(graph, "c") == {"a", "b"}

    def test_lookup_view_over_document_store(self):
        records = {r.id: r for r in _build_records({"a": [], "b": ["a", "gone"], "c": ["b"]})}
        view = LookupTaskView(records.get)
        assert transitive_dependencies(view, "c") == {"a", "b"}
        assert transitive_dependents(view, "a") == {"b", "c"}
        assert "gone" not in view

    def test_lookup_failure_propagates_as_graph_lookup_error(self):
        def broken_lookup(task_id: str):
            raise RuntimeError("store unavailable")

        view = LookupTaskView(broken_lookup)
        with pytest.raises(GraphLookupError) as excinfo:
            transitive_dependencies(view, "a")
        assert excinfo.value.node_id == "a"
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_lookup_view_caches_reads(self):
        calls: list[str] = []
        records = {r.id: r for r in _build_records({"a": [], "b": ["a"], "c": ["a", "b"]})}

        def lookup(task_id: str):
            calls.append(task_id)
            return records.get(task_id)

        view = LookupTaskView(lookup)
        transitive_dependencies(view, "c")
        transitive_dependencies(view, "c")
        assert sorted(calls) == ["a", "b", "c"], "快照内每个任务只读取一次"


# ======================================================================
# Test 3: 关键路径
# ======================================================================


class TestCriticalPath:

    def test_no_predecessors(self):
        graph = _build_graph({"solo": []})
        assert critical_path(graph, "solo") == ["solo"]

    def test_missing_task(self):
        assert critical_path(_build_graph({}), "ghost") == ["ghost"]

    def test_follows_longest_chain_not_first_listed(self):
        """d 的第一个前置 b 较短，应沿更长的 c -> a 走."""
        graph = _build_graph({"a": [], "b": [], "c": ["a"], "d": ["b", "c"]})
        assert critical_path(graph, "d") == ["d", "c", "a"]

    def test_tie_prefers_first_listed(self):
        graph = _build_graph({"x": [], "y": [], "e": ["x", "y"]})
        assert critical_path(graph, "e") == ["e", "x"]

    def test_shared_ancestors(self):
        graph = _build_graph({
            "a": [], "b": ["a"], "c": ["a"], "d": ["b", "c"], "e": ["d", "a"],
        })
        assert critical_path(graph, "e") == ["e", "d", "b", "a"]

    def test_skips_dangling_predecessor(self):
        graph = _build_graph({"a": [], "b": ["ghost", "a"]})
        assert critical_path(graph, "b") == ["b", "a"]

    def test_cycle_is_cut_instead_of_looping(self):
        graph = _build_graph({"a": ["b"], "b": ["a"]})
        assert critical_path(graph, "a") == ["a", "b"]

    def test_long_chain(self):
        n = 3000
        blocked_by = {f"t{i}": ([f"t{i - 1}"] if i else []) for i in range(n)}
        path = critical_path(_build_graph(blocked_by), f"t{n - 1}")
        assert len(path) == n
        assert path[0] == f"t{n - 1}" and path[-1] == "t0"


# ======================================================================
# Test 4: TaskGraph 不变量
# ======================================================================


class TestTaskGraph:

    def test_reports_snapshot_inconsistencies(self):
        graph = TaskGraph([
            TaskRecord(id="a", blocks=["b"]),
            TaskRecord(id="b"),
            TaskRecord(id="c", blocked_by=["a", "ghost"]),
        ])
        problems = graph.inconsistencies()
        assert any("'b' is not blocked by it" in p for p in problems)
        assert any("'a' does not list 'c' in blocks" in p for p in problems)
        assert any("missing task 'ghost'" in p for p in problems)

    def test_exported_records_are_mutual_inverses(self):
        graph = TaskGraph([
            TaskRecord(id="a", blocks=["b"]),
            TaskRecord(id="b"),
            TaskRecord(id="c", blocked_by=["a"]),
        ])
        records = {r.id: r for r in graph.to_records()}
        assert records["a"].blocks == ["c"], "以 blocked_by 为规范方向"
        assert records["b"].blocked_by == []
        for record in records.values():
            for dep in record.blocks:
                assert record.id in records[dep].blocked_by

    def test_add_and_remove_dependency(self):
        graph = _build_graph({"a": [], "b": [], "c": []})
        assert graph.add_dependency("b", "a") is True
        assert graph.add_dependency("c", "b") is True
        assert graph.successors_of("a") == ["b"]
        assert graph.add_dependency("c", "b") is False, "重复边被拒绝"
        assert graph.add_dependency("a", "c") is False, "会形成环的边被拒绝"
        assert graph.add_dependency("a", "zzz") is False, "未知任务被拒绝"
        assert graph.has_cycle() is False

        assert graph.remove_dependency("c", "b") is True
        assert graph.successors_of("b") == []
        assert graph.remove_dependency("c", "b") is False

    def test_get_returns_copy(self):
        graph = _build_graph({"a": [], "b": ["a"]})
        record = graph.get("b")
        record.blocked_by.append("zzz")
        assert graph.predecessors_of("b") == ["a"]

    def test_from_store_documents(self):
        graph = TaskGraph.from_records([
            {"id": "a", "status": "done", "blockedBy": [], "blocks": ["b"]},
            {"id": "b", "status": "blocked", "blockedBy": ["a"], "blocks": []},
        ])
        assert graph.get("b").blocked_by == ["a"]
        assert graph.get("a").status == TaskStatus.DONE
        assert graph.inconsistencies() == []


class TestDependencyValidator:

    def test_facade(self):
        graph = _build_graph(
            {"a": [], "b": ["a"], "c": ["a", "b"]},
            {"a": TaskStatus.DONE, "b": TaskStatus.IN_PROGRESS},
        )
        validator = DependencyValidator(graph)
        assert validator.would_create_cycle("a", "c") is True
        assert validator.would_create_cycle("c", "a") is False
        assert validator.transitive_dependencies("c") == {"a", "b"}
        assert validator.transitive_dependents("a") == {"b", "c"}
        assert validator.critical_path("c") == ["c", "b", "a"]
        assert validator.blocking_prerequisites("c") == ["b"]
