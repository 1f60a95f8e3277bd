"""Tests for bartloop.lib.scheduler module."""

from bartloop.lib.scheduler import blocking_workstreams, deps_met, find_next_task, pending_tasks
from bartloop.lib.tasks import TasksData, Task


def _data(*tasks):
    return TasksData(tasks=list(tasks))


def _task(task_id, workstream="A", status="pending", depends_on=None):
    return Task(id=task_id, workstream=workstream, title=task_id, status=status,
                depends_on=depends_on or [])


class TestFindNextTask:
    """Tests for find_next_task()."""

    def test_document_order(self):
        data = _data(_task("A2"), _task("A1"))
        assert find_next_task(data) == "A2"

    def test_skips_unmet_dependencies(self):
        data = _data(_task("A1", status="in_progress"), _task("A2", depends_on=["A1"]), _task("A3"))
        assert find_next_task(data) == "A3"

    def test_dependency_met_when_completed(self):
        data = _data(_task("A1", status="completed"), _task("A2", depends_on=["A1"]))
        assert find_next_task(data) == "A2"

    def test_errored_dependency_blocks(self):
        data = _data(_task("A1", status="error"), _task("A2", depends_on=["A1"]))
        assert find_next_task(data) is None

    def test_workstream_filter(self):
        data = _data(_task("A1"), _task("B1", "B"))
        assert find_next_task(data, "B") == "B1"
        assert find_next_task(data, "C") is None

    def test_missing_dependency_never_eligible(self):
        data = _data(_task("A1", depends_on=["GHOST"]))
        assert find_next_task(data) is None
        assert not deps_met(data, "A1")

    def test_cycle_never_eligible(self):
        data = _data(_task("A1", depends_on=["A2"]), _task("A2", depends_on=["A1"]))
        assert find_next_task(data) is None

    def test_only_pending_considered(self):
        data = _data(_task("A1", status="error"), _task("A2", status="completed"))
        assert find_next_task(data) is None
        assert pending_tasks(data) == []

    def test_deps_met_unknown_task(self):
        assert not deps_met(_data(), "nope")


class TestBlockingWorkstreams:
    """Tests for blocking_workstreams()."""

    def test_filtered_workstream_blocked_by_other(self):
        data = _data(_task("A1"), _task("A2", depends_on=["A1"]), _task("B1", "B", depends_on=["A2"]))
        assert blocking_workstreams(data, "B") == ["A"]

    def test_same_workstream_not_reported(self):
        data = _data(_task("A1", status="in_progress"), _task("A2", depends_on=["A1"]))
        assert blocking_workstreams(data, "A") == []

    def test_unfiltered_uses_task_workstream(self):
        data = _data(_task("A1"), _task("A2", depends_on=["A1"]), _task("B1", "B", depends_on=["A2"]))
        assert blocking_workstreams(data) == ["A"]

    def test_completed_dependency_not_blocking(self):
        data = _data(_task("A1", status="completed"), _task("B1", "B", depends_on=["A1"]))
        assert blocking_workstreams(data, "B") == []

    def test_missing_dependency_reported_by_id(self):
        data = _data(_task("B1", "B", depends_on=["GHOST"]))
        assert blocking_workstreams(data, "B") == ["GHOST"]

    def test_sorted_and_unique(self):
        data = _data(
            _task("C1", "C"), _task("A1"),
            _task("B1", "B", depends_on=["C1", "A1"]),
            _task("B2", "B", depends_on=["A1"]),
        )
        assert blocking_workstreams(data, "B") == ["A", "C"]
