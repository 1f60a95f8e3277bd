"""Tests for bartloop.lib.tasks module."""

import json
import os

import pytest

from bartloop.lib.tasks import (
    Requirement,
    Task,
    TaskNotFound,
    TasksCorrupt,
    TasksData,
    TasksNotFound,
    completion_counts,
    completion_percent,
    find_project_root,
    get_task,
    list_plans,
    load_tasks,
    plan_slug_for,
    require_task,
    resolve_tasks_path,
    requirement_status,
    save_tasks,
    update_task,
)
from bartloop.lib.validate import ValidationError


class TestLoadTasks:
    """Tests for load_tasks()."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(TasksNotFound):
            load_tasks(tmp_path / "tasks.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "tasks.json"
        path.write_text("{not json")
        with pytest.raises(TasksCorrupt):
            load_tasks(path)

    def test_schema_violation(self, tmp_path):
        """A task without a workstream is rejected."""
        path = tmp_path / "tasks.json"
        path.write_text(json.dumps({"tasks": [{"id": "A1", "title": "x"}]}))
        with pytest.raises(TasksCorrupt):
            load_tasks(path)

    def test_unknown_status_rejected(self, write_tasks, make_task):
        path = write_tasks([make_task("A1", status="paused")])
        with pytest.raises(TasksCorrupt):
            load_tasks(path)

    def test_defaults_filled(self, tmp_path):
        path = tmp_path / "tasks.json"
        path.write_text(json.dumps({"tasks": [{"id": "A1", "workstream": "A", "title": "t"}]}))
        task = load_tasks(path).tasks[0]
        assert task.status == "pending"
        assert task.depends_on == []
        assert task.specialist is None

    def test_unknown_keys_survive_save(self, write_tasks, make_task):
        path = write_tasks([make_task("A1", estimate="2h")], custom_meta={"owner": "kim"})
        save_tasks(path, load_tasks(path))

        raw = json.loads(path.read_text())
        assert raw["custom_meta"] == {"owner": "kim"}
        assert raw["tasks"][0]["estimate"] == "2h"

    def test_saved_document_loads_back_equal(self, tmp_path):
        data = TasksData(
            project="shop",
            plan_file="docs/plan.md",
            project_root=str(tmp_path / "src"),
            tasks=[
                Task(id="A1", workstream="A", title="Create schema", description="Tables for orders",
                     files=["db/schema.sql"], status="completed", specialist="dba",
                     requirements=["R1"], files_modified=["db/schema.sql"],
                     started_at="2026-01-05T10:00:00", completed_at="2026-01-05T10:20:00"),
                Task(id="A2", workstream="A", title="Add checkout", depends_on=["A1"],
                     status="error", started_at="2026-01-05T10:21:00",
                     error="Agent exited with code 1"),
                Task(id="B1", workstream="B", title="Deploy", depends_on=["A1", "A2"]),
            ],
            requirements=[
                Requirement(id="R1", description="Orders are stored", covered_by=["A1"]),
                Requirement(id="R2", description="Users can pay", covered_by=["A2", "B1"]),
            ],
        )
        path = tmp_path / "tasks.json"
        save_tasks(path, data)
        assert load_tasks(path) == data


class TestQueries:
    """Tests for task lookup and completion counts."""

    @pytest.fixture
    def data(self, write_tasks, make_task):
        path = write_tasks([
            make_task("auth-login", "A", status="completed"),
            make_task("auth-logout", "A"),
            make_task("db-schema", "B", status="error"),
            make_task("db-seed", "B"),
        ])
        return load_tasks(path)

    def test_get_task(self, data):
        assert get_task(data, "db-seed").workstream == "B"
        assert get_task(data, "nope") is None

    def test_require_task_suggests(self, data):
        with pytest.raises(TaskNotFound) as exc:
            require_task(data, "auth-logn")
        assert exc.value.suggestion == "auth-login"
        assert "did you mean" in str(exc.value)

    def test_completion_counts(self, data):
        assert completion_counts(data) == (1, 4)
        assert completion_counts(data, "A") == (1, 2)
        assert completion_counts(data, "B") == (0, 2)

    def test_completion_percent(self, data):
        assert completion_percent(data) == 25
        assert completion_percent(data, "missing") == 0


class TestRequirementStatus:
    """Requirement coverage is always derived from covering tasks."""

    @pytest.fixture
    def path(self, write_tasks, make_task):
        return write_tasks(
            [make_task("A1", status="completed"), make_task("A2", status="in_progress"), make_task("A3")],
            requirements=[
                {"id": "R1", "covered_by": ["A1"], "status": "none"},
                {"id": "R2", "covered_by": ["A1", "A2"]},
                {"id": "R3", "covered_by": ["A2", "A3"]},
                {"id": "R4", "covered_by": []},
                {"id": "R5", "covered_by": ["A1", "GONE"]},
            ],
        )

    def test_statuses(self, path):
        data = load_tasks(path)
        statuses = {r.id: requirement_status(data, r) for r in data.requirements}
        assert statuses == {
            "R1": "complete",
            "R2": "partial",
            "R3": "none",
            "R4": "none",
            "R5": "partial",
        }

    def test_stored_status_overwritten_on_save(self, path):
        save_tasks(path, load_tasks(path))
        raw = json.loads(path.read_text())
        assert raw["requirements"][0]["status"] == "complete"

    def test_no_requirements_key_stays_absent(self, write_tasks, make_task):
        path = write_tasks([make_task("A1")])
        save_tasks(path, load_tasks(path))
        assert "requirements" not in json.loads(path.read_text())


class TestUpdateTask:
    """Tests for update_task()."""

    def test_updates_one_field(self, write_tasks, make_task):
        path = write_tasks([make_task("A1"), make_task("A2")])
        update_task(path, "A2", specialist="frontend")

        data = load_tasks(path)
        assert get_task(data, "A2").specialist == "frontend"
        assert get_task(data, "A1").specialist is None

    def test_rejects_unknown_field(self, write_tasks, make_task):
        path = write_tasks([make_task("A1")])
        with pytest.raises(ValueError):
            update_task(path, "A1", priority=3)

    def test_rejects_id_change(self, write_tasks, make_task):
        path = write_tasks([make_task("A1")])
        with pytest.raises(ValueError):
            update_task(path, "A1", id="A9")

    def test_unknown_task(self, write_tasks, make_task):
        path = write_tasks([make_task("A1")])
        with pytest.raises(TaskNotFound):
            update_task(path, "Z1", status="completed")

    def test_invalid_status_not_written(self, write_tasks, make_task):
        path = write_tasks([make_task("A1")])
        with pytest.raises(ValidationError):
            update_task(path, "A1", status="bogus")
        assert get_task(load_tasks(path), "A1").status == "pending"


class TestPlanResolution:
    """Tests for finding the task document to operate on."""

    def test_explicit_path_wins(self, project, write_tasks, make_task):
        write_tasks([make_task("A1")])
        explicit = project / "other.json"
        assert resolve_tasks_path(project, tasks=str(explicit)) == explicit.resolve()

    def test_named_plan(self, project, write_tasks, make_task):
        path = write_tasks([make_task("A1")], slug="feature-x")
        assert resolve_tasks_path(project, plan="feature-x") == path

    def test_unknown_plan_suggests(self, project, write_tasks, make_task):
        write_tasks([make_task("A1")], slug="feature-x")
        with pytest.raises(TasksNotFound) as exc:
            resolve_tasks_path(project, plan="feature-y")
        assert "feature-x" in str(exc.value)

    def test_newest_plan_by_mtime(self, project, write_tasks, make_task):
        old = write_tasks([make_task("A1")], slug="old")
        new = write_tasks([make_task("A1")], slug="new")
        os.utime(old, (1_000_000, 1_000_000))
        os.utime(new, (2_000_000, 2_000_000))
        assert resolve_tasks_path(project) == new

    def test_legacy_fallback(self, project):
        assert resolve_tasks_path(project) == project / ".bart" / "tasks.json"

    def test_plan_slug(self, project):
        assert plan_slug_for(project / ".bart" / "plans" / "feature-x" / "tasks.json") == "feature-x"
        assert plan_slug_for(project / ".bart" / "tasks.json") == "_legacy"

    def test_find_project_root_walks_up(self, project):
        nested = project / "src" / "deep"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == project.resolve()

    def test_list_plans(self, project, write_tasks, make_task):
        a = write_tasks([make_task("A1", status="completed"), make_task("B1", "B")], slug="a")
        b = write_tasks([make_task("A1")], slug="b")
        os.utime(a, (1_000_000, 1_000_000))
        os.utime(b, (2_000_000, 2_000_000))

        plans = list_plans(project)
        assert [p.slug for p in plans] == ["b", "a"]
        assert (plans[1].completed, plans[1].total) == (1, 2)
        assert plans[1].workstreams == ["A", "B"]
