"""
Orchestration engine - command line entry point.
编排引擎 —— 命令行入口。

Runs the engine over JSON snapshot files with a rich console UI, so graph
decisions can be inspected without the surrounding service:
使用 Rich 控制台 UI 对 JSON 快照文件运行引擎，无需外部服务即可检查图决策：

    python main.py validate workflow.json
    python main.py ready workflow.json step_1 step_2
    python main.py status steps.json
    python main.py deps tasks.json task_3
    python main.py check tasks.json task_3 task_1

Exit codes: 0 success, 1 rejected / invalid input, 2 usage error.
退出码：0 成功，1 被拒绝或输入非法，2 用法错误。
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

import config
from engine.dependencies import DependencyValidator, TaskGraph
from engine.planner import plan_add_dependency
from engine.state_machine import compute_workflow_status
from engine.workflow import get_ready_steps, topological_sort, validate_workflow
from schema import DependencyPlan, WorkflowDefinition

console = Console()

# Status -> Rich style mapping
# 状态 -> Rich 样式映射
_STATUS_STYLES = {
    "backlog": "dim",
    "ready": "yellow",
    "in_progress": "bold yellow",
    "review": "cyan",
    "blocked": "red",
    "done": "green",
    "pending": "dim",
    "running": "bold yellow",
    "success": "green",
    "failed": "red",
    "skipped": "dim strike",
    "aborted": "magenta",
}

USAGE = (
    "Usage: python main.py [-v] <command> <file> [args...]\n"
    "  validate <workflow.json>\n"
    "  ready    <workflow.json> [completed_step ...]\n"
    "  status   <steps.json>\n"
    "  deps     <tasks.json> <task_id>\n"
    "  check    <tasks.json> <task_id> <on_task_id>"
)


def _styled(status: str) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _load_json(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _load_tasks(path: str) -> TaskGraph | None:
    """Accepts a list of task documents or {"tasks": [...]}; None if neither."""
    data = _load_json(path)
    if isinstance(data, dict):
        data = data.get("tasks", [])
    if not isinstance(data, list):
        console.print("[red]Expected a JSON list of task documents.[/red]")
        return None
    graph = TaskGraph.from_records(data)
    for problem in graph.inconsistencies():
        console.print(f"[yellow]warning:[/yellow] {problem}")
    return graph


# ======================================================================
# Commands
# 子命令
# ======================================================================

def cmd_validate(path: str) -> int:
    """Validate a workflow definition and show its execution order."""
    data = _load_json(path)
    result = validate_workflow(data)
    if not result.valid:
        console.print(Panel(
            "\n".join(f"- {e}" for e in result.errors),
            title="[bold red]Invalid workflow[/bold red]",
            border_style="red",
        ))
        return 1

    definition = WorkflowDefinition.model_validate(data)
    order = topological_sort(definition.nodes, definition.edges) or []
    table = Table(title=f"Execution order: {definition.name or path}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("Title")
    table.add_column("Next", style="dim")
    for i, node_id in enumerate(order, 1):
        spec = definition.nodes[node_id]
        label = node_id + (" (entry)" if node_id == definition.entry_node_id else "")
        table.add_row(str(i), label, spec.task_template.title, ", ".join(definition.edges.get(node_id, [])))
    console.print(table)
    console.print("[green]Workflow is valid.[/green]")
    return 0


def cmd_ready(path: str, completed: list[str]) -> int:
    """Show the steps that are ready given the completed step IDs."""
    data = _load_json(path)
    result = validate_workflow(data)
    if not result.valid:
        console.print("[red]Invalid workflow:[/red] " + "; ".join(result.errors))
        return 1
    definition = WorkflowDefinition.model_validate(data)
    ready = get_ready_steps(definition.nodes, definition.edges, completed)
    if ready:
        console.print("[bold]Ready steps:[/bold] " + ", ".join(f"[yellow]{s}[/yellow]" for s in ready))
    else:
        console.print("[dim]No steps are ready.[/dim]")
    return 0


def cmd_status(path: str) -> int:
    """Aggregate a {step_id: status} mapping into a workflow-run status."""
    data = _load_json(path)
    if not isinstance(data, dict):
        console.print("[red]Expected a JSON object mapping step IDs to statuses.[/red]")
        return 1
    status = compute_workflow_status(data)
    table = Table(title="Step statuses")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    for step_id, step_status in data.items():
        table.add_row(step_id, _styled(str(step_status)))
    console.print(table)
    console.print(f"Workflow status: {_styled(status.value)}")
    return 0


def cmd_deps(path: str, task_id: str) -> int:
    """Show transitive dependencies, dependents and the critical path of a task."""
    graph = _load_tasks(path)
    if graph is None:
        return 1
    if task_id not in graph:
        console.print(f"[red]Task not found:[/red] {task_id}")
        return 1
    validator = DependencyValidator(graph)

    table = Table(title=f"Dependencies of {task_id}")
    table.add_column("Direction")
    table.add_column("Tasks", style="cyan")
    table.add_row("requires", ", ".join(sorted(validator.transitive_dependencies(task_id))) or "-")
    table.add_row("required by", ", ".join(sorted(validator.transitive_dependents(task_id))) or "-")
    console.print(table)

    # 关键路径：以链式树展示
    path_ids = validator.critical_path(task_id)
    tree = Tree(f"[bold]Critical path[/bold] ({len(path_ids)} tasks)")
    branch = tree
    for tid in path_ids:
        task = graph.get(tid)
        branch = branch.add(f"[cyan]{tid}[/cyan] {task.title if task else ''} {_styled(task.status.value) if task else ''}")
    console.print(tree)
    return 0


def cmd_check(path: str, task_id: str, on_task_id: str) -> int:
    """Pre-check "task_id is blocked by on_task_id" and show the resulting plan."""
    graph = _load_tasks(path)
    if graph is None:
        return 1
    plan = plan_add_dependency(graph, task_id, on_task_id)
    _print_plan(plan)
    return 0 if plan.accepted else 1


def _print_plan(plan: DependencyPlan) -> None:
    if not plan.accepted:
        console.print(Panel(plan.reason, title="[bold red]Rejected[/bold red]", border_style="red"))
        return
    if not plan.patches:
        console.print(f"[green]Accepted[/green] (no changes: {plan.reason})")
        return
    table = Table(title="Accepted - patches to apply")
    table.add_column("Task", style="cyan")
    table.add_column("blocked_by")
    table.add_column("blocks")
    table.add_column("status")
    for patch in plan.patches.values():
        table.add_row(
            patch.task_id,
            ", ".join(patch.blocked_by) if patch.blocked_by is not None else "",
            ", ".join(patch.blocks) if patch.blocks is not None else "",
            _styled(patch.status.value) if patch.status else "",
        )
    console.print(table)


# ======================================================================
# Main
# 主函数
# ======================================================================

def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统。verbose=True 时启用 DEBUG 级别。
    """
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )


_COMMANDS = {
    "validate": (cmd_validate, 1),
    "ready": (cmd_ready, None),
    "status": (cmd_status, 1),
    "deps": (cmd_deps, 2),
    "check": (cmd_check, 3),
}


def main(argv: list[str] | None = None) -> int:
    """
    程序入口：解析命令行参数并分派子命令。
    - -v / --verbose：启用调试日志
    """
    argv = sys.argv[1:] if argv is None else argv
    verbose = "--verbose" in argv or "-v" in argv
    setup_logging(verbose)

    # 过滤掉以 - 开头的选项参数，保留位置参数
    args = [a for a in argv if not a.startswith("-")]
    if not args or args[0] not in _COMMANDS:
        console.print(USAGE)
        return 2

    handler, arity = _COMMANDS[args[0]]
    params = args[1:]
    if (arity is None and not params) or (arity is not None and len(params) != arity):
        console.print(USAGE)
        return 2

    try:
        if arity is None:
            return handler(params[0], params[1:])
        return handler(*params)
    except FileNotFoundError as exc:
        console.print(f"[red]File not found:[/red] {exc.filename}")
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid JSON:[/red] {exc}")
    except ValidationError as exc:
        console.print(f"[red]Invalid snapshot:[/red] {exc.error_count()} schema error(s)")
        logging.debug("Snapshot validation failed", exc_info=exc)
    return 1


if __name__ == "__main__":
    sys.exit(main())
