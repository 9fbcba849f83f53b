"""
Graph primitives - generic directed-graph algorithms with no domain knowledge.
图原语 —— 不含任何业务知识的通用有向图算法。

Every function works over a list of node IDs plus a `successors(node_id)`
callable, so the same code serves the task-blocking graph and workflow
definitions. Only the graph induced by the given nodes is considered:
a successor that is not in the node set is a dangling reference and
contributes nothing.
所有函数都只接收节点 ID 列表和 `successors(node_id)` 可调用对象，
因此任务阻塞图和工作流定义共用同一套实现。
只考虑由给定节点集合导出的子图：不在节点集合中的后继视为悬空引用，直接忽略。

Key operations:
  - has_cycle():         DFS with an on-stack set, O(V+E)
  - topological_order(): Kahn's algorithm, None when a cycle exists
  - reachable():         transitive closure from a start node
  - reaches():           early-exit path test used by cycle pre-checks

核心操作：
  - has_cycle():          基于递归栈集合的 DFS 环检测
  - topological_order():  Kahn 算法，存在环时返回 None（而不是部分结果）
  - reachable():          从起点出发的传递闭包
  - reaches():            可提前退出的路径存在性检测，用于加边前的环预检

All traversals are iterative, so long chains never hit the recursion limit.
所有遍历均为迭代实现，超长依赖链也不会触发递归深度限制。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Iterable, Mapping

from engine.errors import GraphTooLargeError

logger = logging.getLogger(__name__)

Successors = Callable[[str], Iterable[str]]


# ======================================================================
# Graph views
# 图视图
# ======================================================================

class GraphView(ABC):
    """
    Minimal read-only capability the validators need from a graph backend.
    校验器对图存储后端的最小只读能力要求。

    Implement it once per storage backend; the validator logic never changes.
    每种存储后端实现一次即可，校验逻辑无需改动。
    """

    @abstractmethod
    def successors_of(self, node_id: str) -> list[str]:
        """IDs of nodes that must wait for `node_id`. 必须等待 node_id 的节点。"""

    @abstractmethod
    def predecessors_of(self, node_id: str) -> list[str]:
        """IDs of nodes `node_id` waits for. node_id 需要等待的节点。"""

    @abstractmethod
    def __contains__(self, node_id: object) -> bool:
        """True if the node exists in the backing store."""


class AdjacencyView(GraphView):
    """
    GraphView over a node collection and a successor map (workflow edges).
    The reverse index is built once, on first use.
    基于节点集合与后继映射（工作流 edges）的 GraphView，反向索引在首次使用时构建一次。
    """

    def __init__(self, nodes: Iterable[str], edges: Mapping[str, Iterable[str]]):
        self._nodes = list(dict.fromkeys(nodes))
        self._node_set = set(self._nodes)
        self._edges = edges
        self._reverse: dict[str, list[str]] | None = None

    @property
    def node_ids(self) -> list[str]:
        return list(self._nodes)

    def successors_of(self, node_id: str) -> list[str]:
        if node_id not in self._node_set:
            return []
        return [s for s in self._edges.get(node_id, ()) if s in self._node_set]

    def predecessors_of(self, node_id: str) -> list[str]:
        if self._reverse is None:
            self._reverse = self._build_reverse()
        return list(self._reverse.get(node_id, ()))

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._node_set

    def _build_reverse(self) -> dict[str, list[str]]:
        reverse: dict[str, list[str]] = {nid: [] for nid in self._nodes}
        for source in self._nodes:
            for target in self.successors_of(source):
                if source not in reverse[target]:
                    reverse[target].append(source)
        return reverse


# ======================================================================
# Algorithms
# 图算法
# ======================================================================

def has_cycle(nodes: Iterable[str], successors: Successors) -> bool:
    """
    Depth-first cycle test. A back-edge into the current DFS stack is a cycle;
    a node with an edge to itself is a cycle of length one.
    深度优先环检测：指向当前 DFS 栈中节点的回边即为环；自环是长度为 1 的环。

    Every node is visited once, disconnected components included.
    每个节点只访问一次，包括不连通的分量。
    """
    order = list(dict.fromkeys(nodes))
    node_set = set(order)
    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in order:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        # 显式栈：(节点, 其后继迭代器)，模拟递归 DFS
        stack = [(root, iter(successors(root) or ()))]

        while stack:
            node, children = stack[-1]
            descended = False
            for child in children:
                if child not in node_set:
                    continue  # 悬空引用
                if child in on_stack:
                    logger.debug("[GRAPH] Back edge %s -> %s closes a cycle", node, child)
                    return True
                if child not in visited:
                    visited.add(child)
                    on_stack.add(child)
                    stack.append((child, iter(successors(child) or ())))
                    descended = True
                    break
            if not descended:
                stack.pop()
                on_stack.discard(node)

    return False


def topological_order(nodes: Iterable[str], successors: Successors) -> list[str] | None:
    """
    Kahn's algorithm - returns node IDs in a valid execution order, or None
    when the graph contains a cycle. Never returns a partial order.
    Kahn 算法 —— 返回合法的拓扑执行顺序；图中有环时返回 None，绝不返回部分结果。

    Ties are broken by node insertion order, so the result is deterministic.
    入度同时为 0 的节点按插入顺序出队，结果确定。
    """
    order = list(dict.fromkeys(nodes))
    if not order:
        return []
    if has_cycle(order, successors):
        logger.warning("[GRAPH] Cycle detected! No topological order exists.")
        return None

    node_set = set(order)
    # 统计每个节点的入度
    in_degree: dict[str, int] = {nid: 0 for nid in order}
    for nid in order:
        for succ in successors(nid) or ():
            if succ in node_set:
                in_degree[succ] += 1

    # 将入度为 0 的节点加入队列
    queue = deque(nid for nid in order if in_degree[nid] == 0)
    result: list[str] = []

    while queue:
        nid = queue.popleft()
        result.append(nid)
        for succ in successors(nid) or ():
            if succ not in node_set:
                continue
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                queue.append(succ)

    if len(result) != len(order):
        # 绝不返回部分结果
        logger.warning("[GRAPH] Topological sort incomplete (%d/%d nodes)", len(result), len(order))
        return None
    return result


def reachable(
    start: str,
    successors: Successors,
    exists: Callable[[str], bool] | None = None,
    max_nodes: int | None = None,
) -> set[str]:
    """
    Transitive closure: every node reachable from `start` in one or more hops.
    `start` itself is never part of the result.
    传递闭包：从 `start` 出发经过一跳或多跳可达的所有节点，结果中不含 `start` 本身。

    Args:
        exists:    Optional existence test; nodes failing it are skipped
                   and contribute nothing (dangling references).
        max_nodes: Raise GraphTooLargeError once more nodes than this are visited.
        exists:    可选的存在性检测；不存在的节点直接跳过（悬空引用）。
        max_nodes: 访问节点数超过该值时抛出 GraphTooLargeError。
    """
    visited: set[str] = set()
    stack: list[str] = [start]

    while stack:
        current = stack.pop()
        if current in visited:
            continue
        if current != start and exists is not None and not exists(current):
            continue
        visited.add(current)
        if max_nodes is not None and len(visited) > max_nodes:
            raise GraphTooLargeError(max_nodes)
        stack.extend(successors(current) or ())

    visited.discard(start)
    return visited


def reaches(
    start: str,
    target: str,
    successors: Successors,
    exists: Callable[[str], bool] | None = None,
    max_nodes: int | None = None,
) -> bool:
    """
    True if `target` is reachable from `start` in one or more hops.
    Stops as soon as the target is found.
    若从 `start` 经一跳或多跳可达 `target` 则返回 True，找到即停止。
    """
    visited: set[str] = set()
    stack: list[str] = list(successors(start) or ())

    while stack:
        current = stack.pop()
        if current in visited:
            continue
        # 悬空引用不构成路径，即使它恰好等于 target
        if exists is not None and not exists(current):
            continue
        if current == target:
            return True
        visited.add(current)
        if max_nodes is not None and len(visited) > max_nodes:
            raise GraphTooLargeError(max_nodes)
        stack.extend(successors(current) or ())

    return False
