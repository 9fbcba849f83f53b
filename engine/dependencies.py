"""
Dependency Graph Validator - cycle pre-checks and closure queries over the
task-blocking graph.
依赖图校验器 —— 面向任务阻塞图的加边环预检与传递闭包查询。

Edge direction: "A blocked_by B" means B must finish before A.
边方向：「A blocked_by B」表示 B 必须先于 A 完成。

Key operations:
  - would_create_cycle_if_depends_on(): reject edges that would close a loop
  - transitive_dependencies():          all ancestors via blocked_by
  - transitive_dependents():            all descendants via blocks
  - critical_path():                    longest predecessor chain, memoized

核心操作：
  - would_create_cycle_if_depends_on(): 拒绝会形成环的新依赖边
  - transitive_dependencies():          沿 blocked_by 的全部祖先
  - transitive_dependents():            沿 blocks 的全部后代
  - critical_path():                    最长前置依赖链（带记忆化）

Concurrency: every function is a pure read over a caller snapshot. The
pre-check and the eventual edge write are two separate steps, so the caller
must run "read graph -> validate -> write graph" under its own consistency
boundary (per-graph lock or optimistic retry). The engine gives no such
guarantee.
并发：所有函数都是对调用方快照的纯读操作。预检与最终写入是两个独立步骤，
调用方必须在自己的一致性边界内执行「读图 -> 校验 -> 写图」（按图加锁或乐观重试），
引擎本身不提供该保证。

Dangling references (an ID listed on a task but absent from the store) are
not errors: they are skipped and contribute nothing to any traversal.
悬空引用（任务列表中存在但存储中不存在的 ID）不是错误：遍历时直接跳过。
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Callable, Iterable

from engine.errors import GraphLookupError
from engine.graph import GraphView, has_cycle, reachable, reaches
from schema import TaskRecord, TaskStatus

logger = logging.getLogger(__name__)


# ======================================================================
# Task views
# 任务视图
# ======================================================================

class TaskView(GraphView):
    """
    GraphView whose nodes are TaskRecords.
    节点为 TaskRecord 的 GraphView。
    """

    @abstractmethod
    def get(self, task_id: str) -> TaskRecord | None:
        """Return the task, or None if it does not exist."""

    def successors_of(self, node_id: str) -> list[str]:
        task = self.get(node_id)
        return list(task.blocks) if task else []

    def predecessors_of(self, node_id: str) -> list[str]:
        task = self.get(node_id)
        return list(task.blocked_by) if task else []

    def __contains__(self, node_id: object) -> bool:
        return isinstance(node_id, str) and self.get(node_id) is not None


class LookupTaskView(TaskView):
    """
    Adapts a caller-supplied lookup function (typically a document store read).
    适配调用方提供的查询函数（通常是文档存储的读取）。

    A view is a snapshot: each task is fetched at most once and then cached,
    so create one view per request. Any exception raised by `lookup` is
    re-raised as GraphLookupError.
    视图即快照：每个任务最多读取一次并缓存，因此每个请求应创建新的视图。
    lookup 抛出的任何异常都会被包装为 GraphLookupError 重新抛出。
    """

    def __init__(self, lookup: Callable[[str], TaskRecord | None]):
        self._lookup = lookup
        self._cache: dict[str, TaskRecord | None] = {}

    def get(self, task_id: str) -> TaskRecord | None:
        if task_id not in self._cache:
            try:
                self._cache[task_id] = self._lookup(task_id)
            except Exception as exc:
                raise GraphLookupError(task_id, f"Lookup failed for task '{task_id}': {exc}") from exc
        return self._cache[task_id]


class TaskGraph(TaskView):
    """
    Task graph with a single canonical edge store.
    只保存一份规范边集合的任务图。

    Each dependency is stored once, as task -> prerequisites. The `blocks`
    direction is a reverse index derived on demand, so the two directions can
    never drift apart. Records exported by `to_records()` always carry
    mutually inverse `blocked_by` / `blocks` lists.
    每条依赖只存一次（task -> 前置任务）。`blocks` 方向是按需派生的反向索引，
    两个方向不可能不一致。`to_records()` 导出的记录中 blocked_by / blocks 始终互逆。
    """

    def __init__(self, tasks: Iterable[TaskRecord] = ()):
        self._tasks: dict[str, TaskRecord] = {}
        self._prerequisites: dict[str, list[str]] = {}
        self._dependents: dict[str, list[str]] | None = None
        self._inconsistencies: list[str] = []

        for task in tasks:
            self._tasks[task.id] = task
            self._prerequisites[task.id] = list(dict.fromkeys(task.blocked_by))
        self._check_snapshot()

    @classmethod
    def from_records(cls, records: Iterable[TaskRecord | dict]) -> TaskGraph:
        """Build from TaskRecords or raw store documents."""
        return cls(r if isinstance(r, TaskRecord) else TaskRecord.model_validate(r) for r in records)

    # ------------------------------------------------------------------
    # Queries
    # 查询
    # ------------------------------------------------------------------

    @property
    def node_ids(self) -> list[str]:
        return list(self._tasks)

    def get(self, task_id: str) -> TaskRecord | None:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        return task.model_copy(update={
            "blocked_by": list(self._prerequisites[task_id]),
            "blocks": self.successors_of(task_id),
        })

    def predecessors_of(self, node_id: str) -> list[str]:
        return list(self._prerequisites.get(node_id, ()))

    def successors_of(self, node_id: str) -> list[str]:
        if node_id not in self._tasks:
            return []
        return list(self._reverse_index().get(node_id, ()))

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def has_cycle(self) -> bool:
        return has_cycle(self.node_ids, self.successors_of)

    def inconsistencies(self) -> list[str]:
        """
        Problems found in the snapshot this graph was built from.
        构建时在快照中发现的不一致问题（blocks 与 blocked_by 不互逆、悬空引用等）。
        """
        return list(self._inconsistencies)

    def to_records(self) -> list[TaskRecord]:
        return [self.get(tid) for tid in self._tasks]

    # ------------------------------------------------------------------
    # Invariant-checked mutation
    # 带不变量检查的变更
    # ------------------------------------------------------------------

    def add_dependency(self, task_id: str, on_task_id: str) -> bool:
        """
        Record that `task_id` requires `on_task_id` to finish first.
        Returns False (and changes nothing) for unknown tasks, duplicates,
        or an edge that would create a cycle.
        记录 task_id 依赖 on_task_id。任务不存在、重复边或会形成环时返回 False 且不做修改。
        """
        if task_id not in self._tasks or on_task_id not in self._tasks:
            logger.warning("[DEPS] Cannot add %s -> %s: unknown task", task_id, on_task_id)
            return False
        if on_task_id in self._prerequisites[task_id]:
            logger.debug("[DEPS] Dependency %s -> %s already exists, skipping", task_id, on_task_id)
            return False
        if would_create_cycle_if_depends_on(self, task_id, on_task_id):
            logger.warning("[DEPS] Cannot add %s -> %s: would create a cycle", task_id, on_task_id)
            return False

        self._prerequisites[task_id].append(on_task_id)
        self._dependents = None
        logger.info("[DEPS] Dependency added: %s blocked by %s", task_id, on_task_id)
        return True

    def remove_dependency(self, task_id: str, on_task_id: str) -> bool:
        prerequisites = self._prerequisites.get(task_id)
        if not prerequisites or on_task_id not in prerequisites:
            return False
        prerequisites.remove(on_task_id)
        self._dependents = None
        logger.info("[DEPS] Dependency removed: %s no longer blocked by %s", task_id, on_task_id)
        return True

    # ------------------------------------------------------------------
    # Internals
    # 内部实现
    # ------------------------------------------------------------------

    def _reverse_index(self) -> dict[str, list[str]]:
        if self._dependents is None:
            dependents: dict[str, list[str]] = {tid: [] for tid in self._tasks}
            for tid, prerequisites in self._prerequisites.items():
                for pre in prerequisites:
                    if pre in dependents:
                        dependents[pre].append(tid)
            self._dependents = dependents
        return self._dependents

    def _check_snapshot(self) -> None:
        """Compare the snapshot's `blocks` lists with the canonical edges."""
        for tid, task in self._tasks.items():
            for pre in self._prerequisites[tid]:
                if pre not in self._tasks:
                    self._inconsistencies.append(f"Task '{tid}' is blocked by missing task '{pre}'")
                elif tid not in self._tasks[pre].blocks:
                    self._inconsistencies.append(f"Task '{pre}' does not list '{tid}' in blocks")
            for dep in task.blocks:
                if dep not in self._tasks:
                    self._inconsistencies.append(f"Task '{tid}' blocks missing task '{dep}'")
                elif tid not in self._prerequisites[dep]:
                    self._inconsistencies.append(
                        f"Task '{tid}' lists '{dep}' in blocks but '{dep}' is not blocked by it"
                    )
        for problem in self._inconsistencies:
            logger.warning("[DEPS] Snapshot inconsistency: %s", problem)


# ======================================================================
# Validator operations
# 校验操作
# ======================================================================

def would_create_cycle_if_depends_on(
    view: GraphView,
    task_id: str,
    on_task_id: str,
    max_nodes: int | None = None,
) -> bool:
    """
    True iff making `task_id` depend on `on_task_id` would create a cycle.
    若让 task_id 依赖 on_task_id 会形成环则返回 True。

    The new edge closes a loop exactly when `task_id` is already, directly or
    transitively, required by `on_task_id`. A task depending on itself is
    always a cycle. Nothing is mutated; the caller must honor the answer
    before persisting the edge.
    当 on_task_id 已经（直接或传递地）依赖 task_id 时，新边会闭合成环。
    任务依赖自身永远是环。本函数不修改任何状态，调用方须在写入前遵从结果。
    """
    if task_id == on_task_id:
        return True
    return reaches(
        on_task_id,
        task_id,
        view.predecessors_of,
        exists=view.__contains__,
        max_nodes=max_nodes,
    )


def transitive_dependencies(view: GraphView, task_id: str) -> set[str]:
    """
    All tasks `task_id` requires, directly or transitively (excluding itself).
    task_id 直接或传递依赖的所有任务（不含自身）。
    """
    return reachable(task_id, view.predecessors_of, exists=view.__contains__)


def transitive_dependents(view: GraphView, task_id: str) -> set[str]:
    """
    All tasks that wait on `task_id`, directly or transitively (excluding itself).
    直接或传递等待 task_id 的所有任务（不含自身），用于变更影响分析。
    """
    return reachable(task_id, view.successors_of, exists=view.__contains__)


def critical_path(view: GraphView, task_id: str) -> list[str]:
    """
    Longest predecessor chain ending at `task_id`.
    以 task_id 结尾的最长前置依赖链。

    The result starts at `task_id` and walks backward through blocked_by,
    at each step following the predecessor with the longest remaining chain
    (the first listed one on ties). Chain lengths are memoized for the
    duration of the call. A task without predecessors yields [task_id].
    结果从 task_id 开始沿 blocked_by 反向行走，每一步选择剩余链最长的前置任务
    （长度相同取先列出者）。单次调用内对链长做记忆化。无前置任务时返回 [task_id]。

    A cycle in corrupt data is cut at the back edge instead of looping.
    若数据损坏出现环，则在回边处截断，不会死循环。
    """
    chain_length: dict[str, int] = {}
    next_hop: dict[str, str | None] = {}
    on_path = {task_id}
    # 帧：[节点, 前置列表, 下一个待访问下标]
    stack: list[list] = [[task_id, view.predecessors_of(task_id), 0]]

    while stack:
        frame = stack[-1]
        node, preds = frame[0], frame[1]
        if frame[2] < len(preds):
            pred = preds[frame[2]]
            frame[2] += 1
            if pred in on_path:
                logger.warning("[DEPS] Cycle through %s while computing critical path of %s", pred, task_id)
                continue
            if pred in chain_length or pred not in view:
                continue
            on_path.add(pred)
            stack.append([pred, view.predecessors_of(pred), 0])
            continue

        stack.pop()
        on_path.discard(node)
        best, best_pred = 0, None
        for pred in preds:
            if chain_length.get(pred, 0) > best:
                best, best_pred = chain_length[pred], pred
        chain_length[node] = best + 1
        next_hop[node] = best_pred

    path = [task_id]
    current = next_hop[task_id]
    while current is not None:
        path.append(current)
        current = next_hop[current]
    return path


class DependencyValidator:
    """
    Facade bundling the dependency queries over one GraphView.
    针对单个 GraphView 的依赖查询门面。

    Caller obligation: call would_create_cycle() before persisting any new
    dependency edge, under the caller's consistency boundary.
    调用方义务：在写入任何新依赖边之前，在自身一致性边界内调用 would_create_cycle()。
    """

    def __init__(self, view: GraphView):
        self.view = view

    def would_create_cycle(self, task_id: str, on_task_id: str) -> bool:
        cycle = would_create_cycle_if_depends_on(self.view, task_id, on_task_id)
        if cycle:
            logger.warning("[DEPS] Rejected %s -> %s: would create a circular dependency", task_id, on_task_id)
        return cycle

    def transitive_dependencies(self, task_id: str) -> set[str]:
        return transitive_dependencies(self.view, task_id)

    def transitive_dependents(self, task_id: str) -> set[str]:
        return transitive_dependents(self.view, task_id)

    def critical_path(self, task_id: str) -> list[str]:
        path = critical_path(self.view, task_id)
        logger.debug("[DEPS] Critical path of %s: %s", task_id, " <- ".join(path))
        return path

    def blocking_prerequisites(self, task_id: str) -> list[str]:
        """
        Direct prerequisites of `task_id` that exist and are not done.
        task_id 的直接前置任务中存在且尚未完成的那些。
        """
        if not isinstance(self.view, TaskView):
            raise TypeError("blocking_prerequisites() needs a TaskView with task statuses")
        open_ids = []
        for pre in self.view.predecessors_of(task_id):
            task = self.view.get(pre)
            if task is not None and task.status != TaskStatus.DONE:
                open_ids.append(pre)
        return open_ids
