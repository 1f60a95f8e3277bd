"""
Dependency scheduler.

Selection is a linear scan in document order: authoring order is the
priority among otherwise-eligible tasks. A task whose dependency is
missing or circular is never eligible and is skipped, not reported.
"""

from typing import Optional

from bartloop.lib.constants import STATUS_COMPLETED, STATUS_PENDING
from bartloop.lib.tasks import Task, TasksData, get_task


def deps_met(data: TasksData, task_id: str) -> bool:
    """True when every dependency of task_id exists and is completed."""
    task = get_task(data, task_id)
    if task is None:
        return False
    return _deps_met(data, task)


def _deps_met(data: TasksData, task: Task) -> bool:
    for dep_id in task.depends_on:
        dep = get_task(data, dep_id)
        if dep is None or dep.status != STATUS_COMPLETED:
            return False
    return True


def find_next_task(data: TasksData, workstream: Optional[str] = None) -> Optional[str]:
    """Return the id of the first eligible pending task, or None."""
    for task in data.tasks:
        if task.status != STATUS_PENDING:
            continue
        if workstream is not None and task.workstream != workstream:
            continue
        if _deps_met(data, task):
            return task.id
    return None


def pending_tasks(data: TasksData, workstream: Optional[str] = None) -> list[Task]:
    return [
        t for t in data.tasks
        if t.status == STATUS_PENDING and (workstream is None or t.workstream == workstream)
    ]


def blocking_workstreams(data: TasksData, workstream: Optional[str] = None) -> list[str]:
    """Other workstreams holding unfinished dependencies of pending tasks in scope.

    "Other" means different from the filter, or from the pending task's own
    workstream when unfiltered. A dependency id that does not exist is
    reported as itself, since no workstream will ever complete it.
    """
    blockers = set()
    for task in pending_tasks(data, workstream):
        own = workstream if workstream is not None else task.workstream
        for dep_id in task.depends_on:
            dep = get_task(data, dep_id)
            if dep is None:
                blockers.add(dep_id)
            elif dep.status != STATUS_COMPLETED and dep.workstream != own:
                blockers.add(dep.workstream)
    return sorted(blockers)
