"""
Status State Machines - transition tables for task, workflow-run and
step-run lifecycles, plus the step -> workflow status aggregation.
状态机 —— 任务、工作流运行、步骤运行三套生命周期的转移表，以及步骤状态到工作流状态的聚合。

The transition tables are the single source of truth for what status changes
are legal. Any pair not listed (same-state "transitions" and unrecognized
status strings included) is rejected.
转移表是合法状态变化的唯一权威来源。表中未列出的组合（包括同状态「转移」
以及无法识别的状态字符串）一律拒绝。

Task:          BACKLOG ──> READY | BLOCKED
               READY ──> IN_PROGRESS | BACKLOG | BLOCKED
               IN_PROGRESS ──> REVIEW | BLOCKED | DONE | READY
               REVIEW ──> DONE | IN_PROGRESS | BLOCKED
               BLOCKED ──> READY | BACKLOG
               DONE      (terminal / 终态)
Workflow run:  PENDING ──> RUNNING ──> SUCCESS | FAILED | ABORTED
Step run:      PENDING ──> RUNNING ──> SUCCESS | FAILED
               PENDING ──> SKIPPED   (cancelled before start / 开始前取消)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Mapping, TypeVar

from engine.errors import InvalidTransitionError
from schema import StepRunStatus, TaskStatus, WorkflowRunStatus

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)

# 任务状态转移表
TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.BACKLOG:     {TaskStatus.READY, TaskStatus.BLOCKED},
    TaskStatus.READY:       {TaskStatus.IN_PROGRESS, TaskStatus.BACKLOG, TaskStatus.BLOCKED},
    TaskStatus.IN_PROGRESS: {TaskStatus.REVIEW, TaskStatus.BLOCKED, TaskStatus.DONE, TaskStatus.READY},
    TaskStatus.REVIEW:      {TaskStatus.DONE, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED},
    TaskStatus.BLOCKED:     {TaskStatus.READY, TaskStatus.BACKLOG},
    # Terminal: not even done -> done
    # 终态：连 done -> done 也不允许
    TaskStatus.DONE:        set(),
}

# 工作流运行状态转移表
WORKFLOW_TRANSITIONS: dict[WorkflowRunStatus, set[WorkflowRunStatus]] = {
    WorkflowRunStatus.PENDING: {WorkflowRunStatus.RUNNING},
    WorkflowRunStatus.RUNNING: {WorkflowRunStatus.SUCCESS, WorkflowRunStatus.FAILED, WorkflowRunStatus.ABORTED},
    WorkflowRunStatus.SUCCESS: set(),
    WorkflowRunStatus.FAILED:  set(),
    WorkflowRunStatus.ABORTED: set(),
}

# 步骤运行状态转移表：运行中的步骤不可跳过，也不允许回退
STEP_TRANSITIONS: dict[StepRunStatus, set[StepRunStatus]] = {
    StepRunStatus.PENDING: {StepRunStatus.RUNNING, StepRunStatus.SKIPPED},
    StepRunStatus.RUNNING: {StepRunStatus.SUCCESS, StepRunStatus.FAILED},
    StepRunStatus.SUCCESS: set(),
    StepRunStatus.FAILED:  set(),
    StepRunStatus.SKIPPED: set(),
}


def _coerce(enum_cls: type[S], value: object) -> S | None:
    """Map a status string or enum member to `enum_cls`, None if unrecognized."""
    try:
        return enum_cls(value)
    except ValueError:
        return None


def coerce_step_status(value: object) -> StepRunStatus | None:
    return _coerce(StepRunStatus, value)


def _is_allowed(table: Mapping[S, set[S]], from_status: object, to_status: object) -> bool:
    enum_cls = type(next(iter(table)))
    current = _coerce(enum_cls, from_status)
    target = _coerce(enum_cls, to_status)
    if current is None or target is None:
        return False
    return target in table[current]


def is_task_transition_allowed(from_status: object, to_status: object) -> bool:
    return _is_allowed(TASK_TRANSITIONS, from_status, to_status)


def is_workflow_transition_allowed(from_status: object, to_status: object) -> bool:
    return _is_allowed(WORKFLOW_TRANSITIONS, from_status, to_status)


def is_step_transition_allowed(from_status: object, to_status: object) -> bool:
    return _is_allowed(STEP_TRANSITIONS, from_status, to_status)


def allowed_targets(table: Mapping[S, set[S]], status: object) -> list[str]:
    """
    Sorted status values reachable from `status` in one step ([] if unknown).
    从 status 一步可达的状态值（排序后）；未知状态返回 []。
    """
    current = _coerce(type(next(iter(table))), status)
    if current is None:
        return []
    return sorted(s.value for s in table[current])


def describe_rejection(table: Mapping[S, set[S]], from_status: object, to_status: object) -> str:
    """Human-readable reason, e.g. 'Invalid transition: done -> ready. Allowed: none'."""
    targets = allowed_targets(table, from_status)
    return (
        f"Invalid transition: {_value(from_status)} -> {_value(to_status)}. "
        f"Allowed: {', '.join(targets) or 'none'}"
    )


def _value(status: object) -> str:
    return status.value if isinstance(status, Enum) else str(status)


# ======================================================================
# Aggregation
# 聚合
# ======================================================================

def compute_workflow_status(step_statuses: Mapping[str, object]) -> WorkflowRunStatus:
    """
    Fold step statuses into one workflow-run status.
    将各步骤状态聚合为一个工作流运行状态。

    Priority, first match wins:
      1. any step FAILED  -> FAILED   (one failure dominates)
      2. any step RUNNING -> RUNNING  (partial progress is still running)
      3. any step PENDING -> PENDING
      4. otherwise (all SUCCESS / SKIPPED, or no steps) -> SUCCESS
    优先级（首个命中即返回）：失败 > 运行中 > 等待中 > 成功。

    Unrecognized step values count as PENDING, so garbage never reads as success.
    无法识别的步骤状态视为 PENDING，避免脏数据被误判为成功。
    """
    statuses = {coerce_step_status(s) or StepRunStatus.PENDING for s in step_statuses.values()}

    if StepRunStatus.FAILED in statuses:
        return WorkflowRunStatus.FAILED
    if StepRunStatus.RUNNING in statuses:
        return WorkflowRunStatus.RUNNING
    if StepRunStatus.PENDING in statuses:
        return WorkflowRunStatus.PENDING
    return WorkflowRunStatus.SUCCESS


# ======================================================================
# State machine object
# 状态机对象
# ======================================================================

class StatusStateMachine:
    """
    Validates status changes against one transition table.
    基于单张转移表校验状态变化。

    Provides a single `transition()` method that:
      1. Checks the transition table
      2. Returns the new status (the caller persists it)
      3. Fires an optional callback for logging / notifications

    提供唯一的 `transition()` 方法，该方法：
      1. 查询转移表校验合法性
      2. 返回新状态（由调用方负责持久化）
      3. 触发可选回调（用于日志或通知）
    """

    def __init__(
        self,
        table: Mapping[S, set[S]],
        name: str = "status",
        on_transition: Callable[[str, Enum, Enum], None] | None = None,
    ):
        """
        Args:
            table:         One of TASK_TRANSITIONS / WORKFLOW_TRANSITIONS / STEP_TRANSITIONS.
            name:          Label used in log lines and error messages.
            on_transition: Optional callback(entity_id, old_status, new_status).
            on_transition: 可选回调 callback(实体 ID, 旧状态, 新状态)。
        """
        self._table = table
        self._enum = type(next(iter(table)))
        self.name = name
        self._on_transition = on_transition

    def can_transition(self, current: object, target: object) -> bool:
        return _is_allowed(self._table, current, target)

    def allowed_targets(self, current: object) -> list[str]:
        return allowed_targets(self._table, current)

    def is_terminal(self, status: object) -> bool:
        current = _coerce(self._enum, status)
        return current is not None and not self._table[current]

    def transition(self, entity_id: str, current: object, target: object) -> Enum:
        """
        Validate a status change and return the new status.
        Raises InvalidTransitionError if the change is illegal; the caller
        must then leave the entity untouched and report a conflict.
        校验状态变化并返回新状态。非法时抛出 InvalidTransitionError，
        调用方此时必须保持实体状态不变并上报冲突。
        """
        if not self.can_transition(current, target):
            raise InvalidTransitionError(
                f"{self.name} '{entity_id}': {describe_rejection(self._table, current, target)}"
            )

        old_status = self._enum(current)
        new_status = self._enum(target)
        logger.debug("[SM] %s %s: %s -> %s", self.name, entity_id, old_status.value, new_status.value)

        if self._on_transition:
            try:
                self._on_transition(entity_id, old_status, new_status)
            except Exception:
                # 回调异常不影响状态决策
                logger.exception("[SM] on_transition callback failed for %s %s", self.name, entity_id)
        return new_status


def task_state_machine(on_transition=None) -> StatusStateMachine:
    return StatusStateMachine(TASK_TRANSITIONS, name="Task", on_transition=on_transition)


def workflow_state_machine(on_transition=None) -> StatusStateMachine:
    return StatusStateMachine(WORKFLOW_TRANSITIONS, name="Workflow run", on_transition=on_transition)


def step_state_machine(on_transition=None) -> StatusStateMachine:
    return StatusStateMachine(STEP_TRANSITIONS, name="Step", on_transition=on_transition)
