"""
Dependency Planner - turns dependency and status mutation requests into
pure decisions the caller applies in one transaction.
依赖变更规划器 —— 把依赖与状态变更请求转换为纯决策，由调用方在同一事务中写入。

Every function reads a TaskView snapshot and returns a DependencyPlan:
  - accepted=False: refuse the mutation and report `reason`
  - accepted=True:  write every patch in `patches` atomically
每个函数读取 TaskView 快照并返回 DependencyPlan：
  - accepted=False：拒绝变更并上报 reason
  - accepted=True： 原子地写入 patches 中的全部更新

Automatic status changes:
  - adding an unfinished prerequisite moves the task to BLOCKED
  - removing the last unfinished prerequisite moves a BLOCKED task to READY
  - completing a task moves BLOCKED dependents with no other open
    prerequisite to READY
自动状态变更：
  - 新增未完成的前置任务时，任务自动变为 BLOCKED
  - 移除最后一个未完成的前置任务时，BLOCKED 任务自动变为 READY
  - 任务完成时，没有其他未完成前置任务的 BLOCKED 后继自动变为 READY

As with the validator, the caller must run read -> plan -> write under its
own consistency boundary.
与校验器相同，调用方必须在自身一致性边界内执行「读 -> 规划 -> 写」。
"""

from __future__ import annotations

import logging

import config
from engine.dependencies import TaskView, would_create_cycle_if_depends_on
from engine.errors import GraphTooLargeError
from engine.state_machine import TASK_TRANSITIONS, describe_rejection, is_task_transition_allowed
from schema import DependencyPlan, TaskPatch, TaskRecord, TaskStatus

logger = logging.getLogger(__name__)

CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY: Adding this dependency would create a circular reference"


def _reject(reason: str) -> DependencyPlan:
    logger.warning("[PLAN] Rejected: %s", reason)
    return DependencyPlan(accepted=False, reason=reason)


def _has_open_prerequisite(view: TaskView, prerequisite_ids: list[str]) -> bool:
    """True if any existing prerequisite is not DONE. Missing ones are ignored."""
    for pre in prerequisite_ids:
        task = view.get(pre)
        if task is not None and task.status != TaskStatus.DONE:
            return True
    return False


def _patch(patches: dict[str, TaskPatch], task_id: str) -> TaskPatch:
    if task_id not in patches:
        patches[task_id] = TaskPatch(task_id=task_id)
    return patches[task_id]


def _unblock(view: TaskView, task: TaskRecord, remaining: list[str], patches: dict[str, TaskPatch]) -> bool:
    if task.status != TaskStatus.BLOCKED or _has_open_prerequisite(view, remaining):
        return False
    _patch(patches, task.id).status = TaskStatus.READY
    logger.info("[PLAN] Task %s unblocked: all dependencies cleared", task.id)
    return True


# ======================================================================
# Dependency edges
# 依赖边
# ======================================================================

def plan_add_dependency(
    view: TaskView,
    task_id: str,
    on_task_id: str,
    max_nodes: int | None = None,
    auto_block: bool | None = None,
) -> DependencyPlan:
    """
    Plan "task_id is blocked by on_task_id".
    规划「task_id 被 on_task_id 阻塞」。

    Rejected when either task is missing, for a self reference, when the
    edge would create a cycle, or when the cycle pre-check walks more than
    `max_nodes` tasks (default config.MAX_TASK_GRAPH_NODES, 0 = unlimited).
    An existing edge is an accepted no-op.
    任一任务不存在、自引用、会形成环、或环预检遍历超过 max_nodes 个任务时拒绝。
    已存在的边视为被接受的空操作。
    """
    task = view.get(task_id)
    blocker = view.get(on_task_id)
    if task is None:
        return _reject(f"Task not found: {task_id}")
    if blocker is None:
        return _reject(f"Blocking task not found: {on_task_id}")
    if task_id == on_task_id:
        return _reject("A task cannot block itself")
    if on_task_id in task.blocked_by:
        logger.debug("[PLAN] Dependency %s -> %s already exists", task_id, on_task_id)
        return DependencyPlan(accepted=True, reason="Dependency already exists")

    limit = config.MAX_TASK_GRAPH_NODES if max_nodes is None else max_nodes
    try:
        cycle = would_create_cycle_if_depends_on(view, task_id, on_task_id, max_nodes=limit or None)
    except GraphTooLargeError as exc:
        return _reject(str(exc))
    if cycle:
        return _reject(CIRCULAR_DEPENDENCY)

    patches: dict[str, TaskPatch] = {}
    _patch(patches, task_id).blocked_by = [*task.blocked_by, on_task_id]
    blocks = list(blocker.blocks)
    if task_id not in blocks:
        blocks.append(task_id)
    _patch(patches, on_task_id).blocks = blocks

    if auto_block is None:
        auto_block = config.AUTO_BLOCK_ON_DEPENDENCY
    # 仅当前置任务未完成、且当前任务既未完成也未阻塞时才自动阻塞
    if (
        auto_block
        and blocker.status != TaskStatus.DONE
        and task.status not in (TaskStatus.DONE, TaskStatus.BLOCKED)
        and is_task_transition_allowed(task.status, TaskStatus.BLOCKED)
    ):
        patches[task_id].status = TaskStatus.BLOCKED
        logger.info("[PLAN] Task %s automatically blocked by %s", task_id, on_task_id)

    logger.info("[PLAN] Dependency accepted: %s blocked by %s", task_id, on_task_id)
    return DependencyPlan(accepted=True, patches=patches)


def plan_remove_dependency(
    view: TaskView,
    task_id: str,
    on_task_id: str,
    auto_unblock: bool | None = None,
) -> DependencyPlan:
    """
    Plan removal of "task_id is blocked by on_task_id".
    规划移除「task_id 被 on_task_id 阻塞」。

    A missing prerequisite is allowed (cleaning a dangling reference): only
    the dependent is patched. A missing edge is an accepted no-op.
    允许前置任务已不存在（清理悬空引用），此时只更新依赖方；边不存在时为空操作。
    """
    task = view.get(task_id)
    if task is None:
        return _reject(f"Task not found: {task_id}")
    blocker = view.get(on_task_id)
    if on_task_id not in task.blocked_by and (blocker is None or task_id not in blocker.blocks):
        return DependencyPlan(accepted=True, reason="Dependency does not exist")

    patches: dict[str, TaskPatch] = {}
    remaining = [pre for pre in task.blocked_by if pre != on_task_id]
    _patch(patches, task_id).blocked_by = remaining
    if blocker is not None:
        _patch(patches, on_task_id).blocks = [dep for dep in blocker.blocks if dep != task_id]

    if auto_unblock is None:
        auto_unblock = config.AUTO_UNBLOCK_ON_REMOVAL
    unblocked = [task_id] if auto_unblock and _unblock(view, task, remaining, patches) else []

    logger.info("[PLAN] Dependency removed: %s no longer blocked by %s", task_id, on_task_id)
    return DependencyPlan(accepted=True, patches=patches, unblocked_task_ids=unblocked)


# ======================================================================
# Task lifecycle
# 任务生命周期
# ======================================================================

def plan_task_deletion(view: TaskView, task_id: str, auto_unblock: bool | None = None) -> DependencyPlan:
    """
    Plan the reference cleanup for deleting `task_id`: drop it from the
    `blocks` of its prerequisites and the `blocked_by` of its dependents.
    The caller deletes the task record itself.
    规划删除 task_id 时的引用清理：从前置任务的 blocks 与后继任务的 blocked_by 中移除它。
    任务记录本身由调用方删除。
    """
    task = view.get(task_id)
    if task is None:
        return _reject(f"Task not found: {task_id}")
    if auto_unblock is None:
        auto_unblock = config.AUTO_UNBLOCK_ON_REMOVAL

    patches: dict[str, TaskPatch] = {}
    unblocked: list[str] = []

    for pre in dict.fromkeys(task.blocked_by):
        blocker = view.get(pre)
        if blocker is None or pre == task_id:
            continue
        _patch(patches, pre).blocks = [dep for dep in blocker.blocks if dep != task_id]

    for dep in dict.fromkeys(task.blocks):
        dependent = view.get(dep)
        if dependent is None or dep == task_id:
            continue
        remaining = [pre for pre in dependent.blocked_by if pre != task_id]
        _patch(patches, dep).blocked_by = remaining
        if auto_unblock and _unblock(view, dependent, remaining, patches):
            unblocked.append(dep)

    logger.info("[PLAN] Deletion of %s touches %d related tasks", task_id, len(patches))
    return DependencyPlan(accepted=True, patches=patches, unblocked_task_ids=unblocked)


def plan_status_change(view: TaskView, task_id: str, new_status: TaskStatus | str) -> DependencyPlan:
    """
    Plan a task status change checked against TASK_TRANSITIONS. Moving a task
    to DONE also readies every BLOCKED dependent left without open
    prerequisites.
    规划一次经 TASK_TRANSITIONS 校验的任务状态变更。任务变为 DONE 时，
    同时将不再有未完成前置任务的 BLOCKED 后继置为 READY。
    """
    task = view.get(task_id)
    if task is None:
        return _reject(f"Task not found: {task_id}")
    if not is_task_transition_allowed(task.status, new_status):
        return _reject(describe_rejection(TASK_TRANSITIONS, task.status, new_status))

    target = TaskStatus(new_status)
    patches = {task_id: TaskPatch(task_id=task_id, status=target)}
    unblocked: list[str] = []
    if target == TaskStatus.DONE:
        for dep in newly_unblocked_tasks(view, task_id):
            patches[dep] = TaskPatch(task_id=dep, status=TaskStatus.READY)
            unblocked.append(dep)

    return DependencyPlan(accepted=True, patches=patches, unblocked_task_ids=unblocked)


def newly_unblocked_tasks(view: TaskView, completed_task_id: str) -> list[str]:
    """
    BLOCKED dependents of `completed_task_id` whose every other existing
    prerequisite is already DONE.
    completed_task_id 的 BLOCKED 后继中，其余现存前置任务均已 DONE 的那些。
    """
    result = []
    for dep in dict.fromkeys(view.successors_of(completed_task_id)):
        dependent = view.get(dep)
        if dependent is None or dependent.status != TaskStatus.BLOCKED:
            continue
        others = [pre for pre in dependent.blocked_by if pre != completed_task_id]
        if not _has_open_prerequisite(view, others):
            result.append(dep)
    return result
