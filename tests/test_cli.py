"""
命令行入口测试 — 对 JSON 快照文件运行各个子命令并检查退出码与输出。

运行方式:
    python -m pytest tests/test_cli.py -v
"""

from __future__ import annotations

import json

import pytest

from main import main


@pytest.fixture
def write_json(tmp_path):
    def _write(name: str, data) -> str:
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return str(path)
    return _write


WORKFLOW = {
    "name": "release",
    "entryNodeId": "A",
    "nodes": {
        "A": {"taskTemplate": {"title": "Build"}},
        "B": {"taskTemplate": {"title": "Unit tests"}},
        "C": {"taskTemplate": {"title": "Lint"}},
        "D": {"taskTemplate": {"title": "Publish"}},
    },
    "edges": {"A": ["B", "C"], "B": ["D"], "C": ["D"]},
}

TASKS = {
    "tasks": [
        {"id": "t1", "title": "Design", "status": "done", "blocks": ["t2"]},
        {"id": "t2", "title": "Implement", "status": "in_progress", "blockedBy": ["t1"], "blocks": ["t3"]},
        {"id": "t3", "title": "Release", "status": "blocked", "blockedBy": ["t2"]},
    ]
}


# ======================================================================
# validate / ready / status
# ======================================================================


class TestWorkflowCommands:

    def test_validate_valid(self, write_json, capsys):
        assert main(["validate", write_json("wf.json", WORKFLOW)]) == 0
        assert "Workflow is valid." in capsys.readouterr().out

    def test_validate_cycle(self, write_json, capsys):
        broken = {**WORKFLOW, "edges": {"A": ["B"], "B": ["A"]}}
        assert main(["validate", write_json("wf.json", broken)]) == 1
        assert "Workflow graph contains a cycle" in capsys.readouterr().out

    def test_ready(self, write_json, capsys):
        assert main(["ready", write_json("wf.json", WORKFLOW), "A"]) == 0
        out = capsys.readouterr().out
        assert "Ready steps:" in out
        assert "B, C" in out

    def test_nothing_ready(self, write_json, capsys):
        assert main(["ready", write_json("wf.json", WORKFLOW), "A", "B", "C", "D"]) == 0
        assert "No steps are ready." in capsys.readouterr().out

    def test_status(self, write_json, capsys):
        path = write_json("steps.json", {"A": "success", "B": "failed", "C": "running"})
        assert main(["status", path]) == 0
        assert "Workflow status: failed" in capsys.readouterr().out


# ======================================================================
# deps / check
# ======================================================================


class TestTaskCommands:

    def test_deps(self, write_json, capsys):
        assert main(["deps", write_json("tasks.json", TASKS), "t3"]) == 0
        assert "Critical path" in capsys.readouterr().out

    def test_deps_unknown_task(self, write_json, capsys):
        assert main(["deps", write_json("tasks.json", TASKS), "nope"]) == 1
        assert "Task not found:" in capsys.readouterr().out

    def test_check_accepts(self, write_json):
        tasks = {"tasks": [*TASKS["tasks"], {"id": "t4", "title": "Docs", "status": "ready"}]}
        assert main(["check", write_json("tasks.json", tasks), "t4", "t2"]) == 0

    def test_check_rejects_cycle(self, write_json, capsys):
        assert main(["check", write_json("tasks.json", TASKS), "t1", "t3"]) == 1
        out = capsys.readouterr().out
        assert "Rejected" in out
        assert "CIRCULAR_DEPENDENCY" in out


# ======================================================================
# 错误输入
# ======================================================================


class TestErrors:

    def test_usage(self, capsys):
        assert main([]) == 2
        assert main(["unknown"]) == 2
        assert main(["deps", "only_one_arg.json"]) == 2

    def test_missing_file(self, tmp_path, capsys):
        assert main(["validate", str(tmp_path / "missing.json")]) == 1
        assert "File not found:" in capsys.readouterr().out

    def test_invalid_json(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        assert main(["status", str(path)]) == 1
        assert "Invalid JSON" in capsys.readouterr().out

    @pytest.mark.parametrize("snapshot", [None, 5, "tasks", {"tasks": 5}, {"tasks": None}])
    def test_task_snapshot_not_a_list(self, write_json, capsys, snapshot):
        path = write_json("tasks.json", snapshot)
        assert main(["deps", path, "a"]) == 1
        assert "Expected a JSON list of task documents." in capsys.readouterr().out
        assert main(["check", path, "a", "b"]) == 1

    def test_invalid_task_snapshot(self, write_json, capsys):
        path = write_json("tasks.json", [{"id": "t1", "status": "archived"}])
        assert main(["deps", path, "t1"]) == 1
        assert "Invalid snapshot" in capsys.readouterr().out
