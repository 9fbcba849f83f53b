"""
Pydantic data models for the orchestration engine.
Defines the snapshot types the engine reads and the decisions it returns.
编排引擎的 Pydantic 数据模型。
定义了引擎读取的快照类型以及引擎返回的决策结果。

Field aliases (blockedBy, entryNodeId, ...) match the JSON documents kept by
the surrounding document store, so exported snapshots load unchanged.
字段别名（blockedBy、entryNodeId 等）与外部文档存储中的 JSON 保持一致，
导出的快照可以直接加载。
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _StoreModel(BaseModel):
    """Accepts both python field names and the store's camelCase aliases."""
    model_config = ConfigDict(populate_by_name=True)


# ======================================================================
# Status enums
# 状态枚举
# ======================================================================

class TaskStatus(str, Enum):
    """
    Task lifecycle states, governed by TASK_TRANSITIONS.
    任务生命周期状态，由 TASK_TRANSITIONS 强制管理合法转移。

    Transition graph:
    转移图：
        BACKLOG     -> READY | BLOCKED
        READY       -> IN_PROGRESS | BACKLOG | BLOCKED
        IN_PROGRESS -> REVIEW | BLOCKED | DONE | READY
        REVIEW      -> DONE | IN_PROGRESS | BLOCKED
        BLOCKED     -> READY | BACKLOG
        DONE        (terminal / 终态)
    """
    BACKLOG = "backlog"           # 待规划
    READY = "ready"               # 可开始
    IN_PROGRESS = "in_progress"   # 进行中
    REVIEW = "review"             # 评审中
    BLOCKED = "blocked"           # 被前置依赖阻塞
    DONE = "done"                 # 已完成（终态）


class WorkflowRunStatus(str, Enum):
    """
    Workflow run states. PENDING -> RUNNING -> SUCCESS | FAILED | ABORTED.
    工作流运行状态。
    """
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"   # 终态
    FAILED = "failed"     # 终态
    ABORTED = "aborted"   # 终态


class StepRunStatus(str, Enum):
    """
    Step run states. PENDING -> RUNNING | SKIPPED, RUNNING -> SUCCESS | FAILED.
    步骤运行状态。SKIPPED 表示开始前被取消。
    """
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"   # 开始前取消


# ======================================================================
# Task dependency graph
# 任务依赖图
# ======================================================================

class TaskRecord(_StoreModel):
    """
    A task as stored by the caller. Only the fields the engine reasons about.
    调用方存储中的任务记录，只保留引擎关心的字段。

    `blocked_by` and `blocks` are the two denormalized halves of the same
    dependency edges and are expected to be mutual inverses.
    `blocked_by` 与 `blocks` 是同一组依赖边的双向冗余表示，应互为逆关系。
    """
    id: str = Field(description="Opaque task ID")                                                     # 任务唯一 ID
    title: str = ""                                                                                   # 任务标题（仅用于展示）
    status: TaskStatus = TaskStatus.BACKLOG                                                           # 当前状态
    blocked_by: list[str] = Field(default_factory=list, alias="blockedBy", description="Prerequisite task IDs")  # 前置任务
    blocks: list[str] = Field(default_factory=list, description="Task IDs gated by this task")        # 被本任务阻塞的后继任务


class TaskPatch(BaseModel):
    """
    A partial update the caller must apply to one task record.
    调用方需要写入某条任务记录的局部更新。None 表示该字段不变。
    """
    task_id: str
    blocked_by: list[str] | None = None
    blocks: list[str] | None = None
    status: TaskStatus | None = None


class DependencyPlan(BaseModel):
    """
    Decision returned by the dependency planner.
    依赖变更规划器返回的决策。

    When `accepted` is False the caller must refuse the mutation and surface
    `reason`; `patches` is then empty. When True, every patch must be written
    in one transaction.
    accepted 为 False 时调用方必须拒绝变更并上报 reason（此时 patches 为空）；
    为 True 时必须在同一事务中写入全部 patches。
    """
    accepted: bool
    reason: str = ""
    patches: dict[str, TaskPatch] = Field(default_factory=dict)          # task_id -> patch
    unblocked_task_ids: list[str] = Field(default_factory=list)          # 因本次变更自动解除阻塞的任务


# ======================================================================
# Workflow definitions
# 工作流定义
# ======================================================================

class TaskTemplate(_StoreModel):
    """Task created for the step when it runs. 步骤运行时创建的任务模板。"""
    title: str
    description: str = ""
    priority: str | None = None
    time_estimate: str | None = Field(default=None, alias="timeEstimate")
    tags: list[str] = Field(default_factory=list)


class RetryPolicy(_StoreModel):
    max_attempts: int = Field(default=1, ge=1, alias="maxAttempts")
    delay_ms: int = Field(default=0, ge=0, alias="delayMs")


class WorkflowNodeSpec(_StoreModel):
    """
    A single node of a workflow definition: the unit of work and its
    execution parameters. The engine never interprets these parameters;
    they belong to the execution layer.
    工作流定义中的单个节点：工作单元及其执行参数。
    引擎不解释这些参数，它们属于执行层。
    """
    agent_id: str | None = Field(default=None, alias="agentId")                                      # 指定执行的 agent
    task_template: TaskTemplate = Field(
        default_factory=lambda: TaskTemplate(title="Untitled step"),
        alias="taskTemplate",
    )
    retry_policy: RetryPolicy | None = Field(default=None, alias="retryPolicy")
    timeout_ms: int | None = Field(default=None, alias="timeoutMs")
    input_mapping: dict[str, Any] = Field(default_factory=dict, alias="inputMapping")
    output_mapping: dict[str, Any] = Field(default_factory=dict, alias="outputMapping")


class WorkflowDefinition(_StoreModel):
    """
    A named DAG with a unique entry node. Immutable once built.
    带唯一入口节点的命名 DAG，构建后不可修改。

    edges: node_id -> ordered list of direct successor node IDs.
    edges：node_id -> 直接后继节点 ID 的有序列表。
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = ""
    nodes: dict[str, WorkflowNodeSpec] = Field(default_factory=dict)
    edges: dict[str, list[str]] = Field(default_factory=dict)
    entry_node_id: str = Field(default="", alias="entryNodeId")
    conditional_branches: dict[str, Any] | None = Field(default=None, alias="conditionalBranches")


class ValidationResult(BaseModel):
    """Structured outcome of workflow validation. 工作流校验的结构化结果。"""
    valid: bool
    errors: list[str] = Field(default_factory=list)
