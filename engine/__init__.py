"""
Engine package - dependency and workflow orchestration core.
引擎包 —— 依赖与工作流编排的核心。

Components (each depends only on the ones above it):
  - graph.py:         generic graph primitives (cycle test, topological order, closure)
  - state_machine.py: task / workflow-run / step-run transition tables + aggregation
  - dependencies.py:  task-blocking graph validator (cycle pre-check, closures, critical path)
  - workflow.py:      workflow definition validator and readiness scheduler
  - planner.py:       dependency / status mutation planning for the calling layer

模块组成：
  - graph.py:         通用图原语（环检测、拓扑排序、传递闭包）
  - state_machine.py: 任务 / 工作流运行 / 步骤运行状态转移表及状态聚合
  - dependencies.py:  任务阻塞图校验器（加边环预检、闭包查询、关键路径）
  - workflow.py:      工作流定义校验与就绪步骤计算
  - planner.py:       面向调用层的依赖与状态变更规划

Everything is a pure, synchronous function over caller-supplied snapshots.
所有操作都是基于调用方快照的纯同步函数。
"""

from engine.errors import (                       # 异常
    EngineError,
    GraphLookupError,
    GraphTooLargeError,
    InvalidTransitionError,
    WorkflowValidationError,
)
from engine.graph import AdjacencyView, GraphView, has_cycle, reachable, topological_order
from engine.dependencies import (                 # 任务依赖图
    DependencyValidator,
    LookupTaskView,
    TaskGraph,
    critical_path,
    transitive_dependencies,
    transitive_dependents,
    would_create_cycle_if_depends_on,
)
from engine.workflow import (                     # 工作流定义
    WorkflowScheduler,
    detect_workflow_cycle,
    get_ready_steps,
    topological_sort,
    validate_workflow,
)
from engine.state_machine import (                # 状态机
    StatusStateMachine,
    compute_workflow_status,
    is_step_transition_allowed,
    is_task_transition_allowed,
    is_workflow_transition_allowed,
)
from engine.planner import (                      # 变更规划
    newly_unblocked_tasks,
    plan_add_dependency,
    plan_remove_dependency,
    plan_status_change,
    plan_task_deletion,
)
