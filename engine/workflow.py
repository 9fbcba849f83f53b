"""
Workflow Definition Validator & Scheduler.
工作流定义校验器与调度器。

A workflow definition is a named DAG: `nodes`, `edges` (node -> ordered
successors) and a unique `entry_node_id`. This module checks that a
definition is well formed, computes its execution order and, during a run,
which steps are ready.
工作流定义是一个命名 DAG：nodes、edges（节点 -> 有序后继列表）与唯一入口节点。
本模块负责结构校验、计算执行顺序，并在运行时计算哪些步骤已就绪。

Caller obligations:
  - call validate_workflow() before marking a definition active
  - call get_ready_steps() again after every step-completion write
调用方义务：
  - 激活工作流定义前必须调用 validate_workflow()
  - 每次写入步骤完成后都要重新调用 get_ready_steps()
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from engine.errors import WorkflowValidationError
from engine.graph import AdjacencyView, has_cycle, topological_order
from engine.state_machine import compute_workflow_status, coerce_step_status
from schema import StepRunStatus, ValidationResult, WorkflowDefinition, WorkflowRunStatus

logger = logging.getLogger(__name__)

EdgeMap = Mapping[str, Iterable[str]]


def _successor_fn(edges: EdgeMap):
    return lambda node_id: edges.get(node_id, ())


# ======================================================================
# Pure functions
# 纯函数
# ======================================================================

def detect_workflow_cycle(nodes: Iterable[str], edges: EdgeMap) -> bool:
    """True if the edges, restricted to `nodes`, contain a cycle."""
    return has_cycle(nodes, _successor_fn(edges))


def topological_sort(nodes: Iterable[str], edges: EdgeMap) -> list[str] | None:
    """
    Node IDs in execution order, [] for no nodes, None if a cycle exists.
    A None result is a hard validation failure, not a partial success.
    按执行顺序返回节点 ID；无节点返回 []；有环返回 None（属于硬性校验失败）。
    """
    return topological_order(nodes, _successor_fn(edges))


def get_ready_steps(nodes: Iterable[str], edges: EdgeMap, completed_ids: Iterable[str]) -> list[str]:
    """
    Return steps that are not completed and whose direct predecessors are all
    completed.
    返回尚未完成、且所有直接前置步骤均已完成的步骤。

    A step with no predecessors is ready as soon as it is not completed,
    which is how the entry node starts. The function is pure and stateless:
    it knows only "completed" vs "not completed", never "in flight".
    无前置步骤的节点只要未完成即就绪，入口节点由此最先启动。
    本函数纯粹且无状态：只区分「已完成 / 未完成」，不感知「执行中」。

    Edges with an endpoint outside `nodes` are ignored. Result follows node
    insertion order. A bare string `completed_ids` is one step ID.
    端点不在 nodes 中的边被忽略，结果按节点插入顺序返回。
    completed_ids 为单个字符串时视为一个步骤 ID，而不是逐字符拆分。
    """
    completed = {completed_ids} if isinstance(completed_ids, str) else set(completed_ids)
    view = AdjacencyView(nodes, edges)  # 一次性构建反向邻接表

    ready = []
    for node_id in view.node_ids:
        if node_id in completed:
            continue
        if all(pred in completed for pred in view.predecessors_of(node_id)):
            ready.append(node_id)
    return ready


def validate_workflow(definition: WorkflowDefinition | Mapping[str, Any]) -> ValidationResult:
    """
    Check that a workflow definition is well formed.
    校验工作流定义的结构合法性。

    Checks (all reported together, except that an empty node set returns
    immediately):
      - at least one node exists
      - entry_node_id refers to an existing node
      - every edge source and target refers to an existing node
      - the graph is acyclic
    检查项（全部一起报告；仅当节点集合为空时立即返回）：
      - 至少有一个节点
      - 入口节点存在
      - 每条边的起点和终点都存在
      - 图中无环

    Raw documents are accepted too; schema errors are returned as
    validation errors rather than raised.
    也接受原始文档；模式错误以校验错误返回，不会抛出异常。
    """
    if not isinstance(definition, WorkflowDefinition):
        try:
            definition = WorkflowDefinition.model_validate(definition)
        except ValidationError as exc:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or 'definition'}: {err['msg']}"
                for err in exc.errors()
            ]
            logger.warning("[WF] Definition rejected by schema: %s", errors)
            return ValidationResult(valid=False, errors=errors)

    errors: list[str] = []
    nodes = definition.nodes

    if not nodes:
        errors.append("Workflow must have at least one node")
        return ValidationResult(valid=False, errors=errors)

    if not definition.entry_node_id or definition.entry_node_id not in nodes:
        errors.append(f'Entry node "{definition.entry_node_id}" does not exist in workflow nodes')

    for source, targets in definition.edges.items():
        if source not in nodes:
            errors.append(f'Edge source node "{source}" does not exist')
        for target in targets:
            if target not in nodes:
                errors.append(f'Edge target node "{target}" does not exist')

    if detect_workflow_cycle(nodes, definition.edges):
        errors.append("Workflow graph contains a cycle")

    if errors:
        logger.warning("[WF] Workflow '%s' invalid: %s", definition.name, "; ".join(errors))
    return ValidationResult(valid=not errors, errors=errors)


# ======================================================================
# Scheduler
# 调度器
# ======================================================================

class WorkflowScheduler:
    """
    A validated workflow definition plus the run-time queries over it.
    已通过校验的工作流定义及其运行时查询。

    Construction raises WorkflowValidationError for a malformed definition.
    The scheduler validates and then keeps its own deep copy, so later
    in-place edits to the caller's `nodes` / `edges` dicts cannot change
    the graph it schedules. Raw documents are accepted like
    validate_workflow() accepts them.
    The scheduler holds no run state: every query takes the current step
    statuses from the caller.
    定义不合法时构造函数抛出 WorkflowValidationError。
    校验通过后调度器保存一份深拷贝，调用方之后原地修改 nodes / edges 不会影响调度。
    与 validate_workflow() 一样也接受原始文档。
    调度器不持有运行状态：每次查询都由调用方传入当前步骤状态。
    """

    _DONE = {StepRunStatus.SUCCESS, StepRunStatus.SKIPPED}

    def __init__(self, definition: WorkflowDefinition | Mapping[str, Any]):
        result = validate_workflow(definition)
        if not result.valid:
            raise WorkflowValidationError(result.errors)
        if isinstance(definition, WorkflowDefinition):
            self._definition = definition.model_copy(deep=True)
        else:
            self._definition = WorkflowDefinition.model_validate(definition)
        self._execution_order = topological_sort(self._definition.nodes, self._definition.edges) or []
        logger.debug("[WF] Scheduler ready: %s", self.summary())

    @property
    def definition(self) -> WorkflowDefinition:
        """A copy of the validated definition. 已校验定义的副本。"""
        return self._definition.model_copy(deep=True)

    @property
    def execution_order(self) -> list[str]:
        return list(self._execution_order)

    def ready_steps(self, step_statuses: Mapping[str, str]) -> list[str]:
        """
        Steps that can be started now: still PENDING (or never recorded) and
        with every predecessor SUCCESS or SKIPPED.
        当前可启动的步骤：仍为 PENDING（或尚无记录），且所有前置步骤为 SUCCESS 或 SKIPPED。
        """
        statuses = {sid: coerce_step_status(s) for sid, s in step_statuses.items()}
        completed = [sid for sid, s in statuses.items() if s in self._DONE]
        ready = get_ready_steps(self._definition.nodes, self._definition.edges, completed)
        return [
            sid for sid in ready
            if statuses.get(sid, StepRunStatus.PENDING) == StepRunStatus.PENDING
        ]

    def run_status(self, step_statuses: Mapping[str, str]) -> WorkflowRunStatus:
        """Aggregate status of the run; steps without a record count as pending."""
        merged = {sid: step_statuses.get(sid, StepRunStatus.PENDING) for sid in self._definition.nodes}
        return compute_workflow_status(merged)

    def summary(self) -> str:
        """
        One-line summary for logging, e.g. Workflow[onboarding: 4 steps, entry=step_1]
        生成单行摘要，用于日志输出。
        """
        name = self._definition.name or "unnamed"
        return f"Workflow[{name}: {len(self._definition.nodes)} steps, entry={self._definition.entry_node_id}]"
