"""Shared fixtures: a project directory with a plan and a task document."""

import json

import pytest


def task_dict(task_id, workstream="A", status="pending", depends_on=None, **fields):
    data = {
        "id": task_id,
        "workstream": workstream,
        "title": fields.pop("title", f"Task {task_id}"),
        "description": fields.pop("description", ""),
        "files": fields.pop("files", []),
        "depends_on": depends_on or [],
        "status": status,
    }
    data.update(fields)
    return data


@pytest.fixture
def make_task():
    """Build a raw task dict for a tasks.json document."""
    return task_dict


@pytest.fixture
def project(tmp_path):
    """Project root with an empty .bart directory."""
    (tmp_path / ".bart").mkdir()
    return tmp_path


@pytest.fixture
def write_tasks(project):
    """Write a task document under .bart/plans/<slug>/tasks.json."""
    def _write(tasks, slug="demo", **doc):
        path = project / ".bart" / "plans" / slug / "tasks.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(dict(doc, tasks=tasks), indent=2))
        return path
    return _write
