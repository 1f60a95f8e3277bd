"""
Task store for bart.

Loads and persists the task document (tasks.json). Every logical read
re-loads from disk so cooperating processes observe each other's writes.
Writes replace the whole document; concurrent writers are last-writer-wins.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from bartloop.lib.constants import (
    BART_DIR,
    LEGACY_PLAN_SLUG,
    PLANS_DIR,
    REQ_COMPLETE,
    REQ_NONE,
    REQ_PARTIAL,
    STATUS_COMPLETED,
    STATUS_PENDING,
    TASKS_FILE,
)
from bartloop.lib.suggest import find_similar
from bartloop.lib.validate import ValidationError, validate, validate_before_write

logger = logging.getLogger(__name__)


class TaskStoreError(Exception):
    """Base error for task document operations."""
    pass


class TasksNotFound(TaskStoreError):
    """The task document does not exist."""
    pass


class TasksCorrupt(TaskStoreError):
    """The task document is not valid JSON or does not match the schema."""
    pass


class TaskNotFound(TaskStoreError):
    """A task id is not present in the document."""

    def __init__(self, task_id: str, suggestion: Optional[str] = None):
        self.task_id = task_id
        self.suggestion = suggestion
        message = f"Task '{task_id}' not found"
        if suggestion:
            message += f" (did you mean '{suggestion}'?)"
        super().__init__(message)


_TASK_KEYS = (
    "id", "workstream", "title", "description", "files", "depends_on", "status",
    "specialist", "requirements", "files_modified", "started_at", "completed_at", "error",
)
_DOC_KEYS = ("project", "plan_file", "project_root", "requirements", "tasks")


@dataclass
class Task:
    """A unit of work in one workstream."""
    id: str
    workstream: str
    title: str
    description: str = ""
    files: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    status: str = STATUS_PENDING
    specialist: Optional[str] = None
    requirements: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None
    # Keys we don't know about, carried through untouched
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        return cls(
            id=data["id"],
            workstream=data["workstream"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            files=list(data.get("files", [])),
            depends_on=list(data.get("depends_on", [])),
            status=data.get("status", STATUS_PENDING),
            specialist=data.get("specialist"),
            requirements=list(data.get("requirements", [])),
            files_modified=list(data.get("files_modified", [])),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            error=data.get("error"),
            extra={k: v for k, v in data.items() if k not in _TASK_KEYS},
        )

    def to_dict(self) -> dict:
        result = {
            "id": self.id,
            "workstream": self.workstream,
            "title": self.title,
            "description": self.description,
            "files": list(self.files),
            "depends_on": list(self.depends_on),
            "status": self.status,
        }
        if self.specialist is not None:
            result["specialist"] = self.specialist
        if self.requirements:
            result["requirements"] = list(self.requirements)
        result["files_modified"] = list(self.files_modified)
        result["started_at"] = self.started_at
        result["completed_at"] = self.completed_at
        result["error"] = self.error
        result.update(self.extra)
        return result


@dataclass
class Requirement:
    """A requirement and the tasks that cover it. Status is always derived."""
    id: str
    description: str = ""
    covered_by: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Requirement":
        # Stored status is ignored; it is recomputed from the covering tasks
        return cls(
            id=data["id"],
            description=data.get("description", ""),
            covered_by=list(data.get("covered_by", [])),
        )


@dataclass
class TasksData:
    """The task document: project metadata, ordered tasks, optional requirements."""
    tasks: list[Task] = field(default_factory=list)
    project: Optional[str] = None
    plan_file: Optional[str] = None
    project_root: Optional[str] = None
    requirements: Optional[list[Requirement]] = None
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "TasksData":
        requirements = data.get("requirements")
        return cls(
            tasks=[Task.from_dict(t) for t in data.get("tasks", [])],
            project=data.get("project"),
            plan_file=data.get("plan_file"),
            project_root=data.get("project_root"),
            requirements=[Requirement.from_dict(r) for r in requirements] if requirements is not None else None,
            extra={k: v for k, v in data.items() if k not in _DOC_KEYS},
        )

    def to_dict(self) -> dict:
        result = {}
        for key in ("project", "plan_file", "project_root"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.requirements is not None:
            result["requirements"] = [
                {
                    "id": r.id,
                    "description": r.description,
                    "covered_by": list(r.covered_by),
                    "status": requirement_status(self, r),
                }
                for r in self.requirements
            ]
        result.update(self.extra)
        result["tasks"] = [t.to_dict() for t in self.tasks]
        return result


def now_iso() -> str:
    """Timestamp format used in the task document and history."""
    return datetime.now().isoformat()


def load_tasks(path: Path) -> TasksData:
    """Load and validate the task document.

    Raises:
        TasksNotFound: if the file does not exist
        TasksCorrupt: if it is not JSON or fails schema validation
    """
    if not path.exists():
        raise TasksNotFound(f"Tasks file not found: {path}")

    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise TasksCorrupt(f"Invalid JSON in {path}: {e}") from None

    try:
        validate(raw, "tasks")
    except ValidationError as e:
        raise TasksCorrupt(f"Invalid task document {path}: {e}") from None

    return TasksData.from_dict(raw)


def save_tasks(path: Path, data: TasksData) -> None:
    """Validate and write the whole document via a temp file + rename."""
    doc = data.to_dict()
    validate_before_write(doc, "tasks", path)

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp_path.write_text(json.dumps(doc, indent=2) + "\n")
    os.replace(tmp_path, path)


# --- Queries (pure, over a snapshot) ---

def get_task(data: TasksData, task_id: str) -> Optional[Task]:
    for task in data.tasks:
        if task.id == task_id:
            return task
    return None


def require_task(data: TasksData, task_id: str) -> Task:
    """Like get_task but raises TaskNotFound with a suggestion."""
    task = get_task(data, task_id)
    if task is None:
        raise TaskNotFound(task_id, find_similar(task_id, [t.id for t in data.tasks]))
    return task


def tasks_in_workstream(data: TasksData, workstream: Optional[str]) -> list[Task]:
    """Tasks in a workstream, or all tasks when workstream is None."""
    if workstream is None:
        return list(data.tasks)
    return [t for t in data.tasks if t.workstream == workstream]


def tasks_with_status(data: TasksData, status: str, workstream: Optional[str] = None) -> list[Task]:
    return [t for t in tasks_in_workstream(data, workstream) if t.status == status]


def workstreams(data: TasksData) -> list[str]:
    return sorted({t.workstream for t in data.tasks})


def completion_counts(data: TasksData, workstream: Optional[str] = None) -> tuple[int, int]:
    """Return (completed, total) for a workstream or the whole document."""
    scoped = tasks_in_workstream(data, workstream)
    completed = sum(1 for t in scoped if t.status == STATUS_COMPLETED)
    return completed, len(scoped)


def completion_percent(data: TasksData, workstream: Optional[str] = None) -> int:
    completed, total = completion_counts(data, workstream)
    if total == 0:
        return 0
    return round(completed / total * 100)


def requirement_status(data: TasksData, requirement: Requirement) -> str:
    """Derive coverage: complete when every covering task is completed,
    partial when at least one is, none otherwise."""
    if not requirement.covered_by:
        return REQ_NONE
    done = 0
    for task_id in requirement.covered_by:
        task = get_task(data, task_id)
        if task is not None and task.status == STATUS_COMPLETED:
            done += 1
    if done == len(requirement.covered_by):
        return REQ_COMPLETE
    if done > 0:
        return REQ_PARTIAL
    return REQ_NONE


# --- Mutation ---

def update_task(path: Path, task_id: str, **fields) -> Task:
    """Re-load the document, apply fields to one task, save.

    Returns the updated task. Raises TaskNotFound for unknown ids.
    """
    data = load_tasks(path)
    task = require_task(data, task_id)
    for key, value in fields.items():
        if not hasattr(task, key) or key == "id":
            raise ValueError(f"Cannot update task field '{key}'")
        setattr(task, key, value)
    save_tasks(path, data)
    logger.debug(f"Updated task {task_id}: {sorted(fields)}")
    return task


# --- Plan resolution ---

def find_project_root(start: Path) -> Path:
    """Walk up from start looking for a .bart directory; fall back to start."""
    current = start.resolve()
    while True:
        if (current / BART_DIR).is_dir():
            return current
        if current.parent == current:
            return start.resolve()
        current = current.parent


def _plan_task_files(project_root: Path) -> list[Path]:
    plans_dir = project_root / BART_DIR / PLANS_DIR
    if not plans_dir.is_dir():
        return []
    return [p for p in plans_dir.glob(f"*/{TASKS_FILE}") if p.is_file()]


def resolve_tasks_path(project_root: Path, tasks: Optional[str] = None, plan: Optional[str] = None) -> Path:
    """Pick the task document to operate on.

    Order: explicit path, named plan, most recently modified plan, legacy
    .bart/tasks.json. The returned path may not exist; load_tasks reports that.
    """
    if tasks:
        return Path(tasks).resolve()

    plans_dir = project_root / BART_DIR / PLANS_DIR
    if plan:
        plan_path = plans_dir / plan / TASKS_FILE
        if not plan_path.exists():
            slugs = [p.parent.name for p in _plan_task_files(project_root)]
            suggestion = find_similar(plan, slugs)
            hint = f" (did you mean '{suggestion}'?)" if suggestion else ""
            raise TasksNotFound(f"Plan '{plan}' not found{hint}")
        return plan_path

    candidates = _plan_task_files(project_root)
    if candidates:
        return max(candidates, key=lambda p: p.stat().st_mtime)

    return project_root / BART_DIR / TASKS_FILE


def plan_slug_for(tasks_path: Path) -> str:
    """Plan identifier used to isolate history: the plan directory name, or _legacy."""
    if tasks_path.parent.parent.name == PLANS_DIR and tasks_path.parent.parent.parent.name == BART_DIR:
        return tasks_path.parent.name
    return LEGACY_PLAN_SLUG


@dataclass
class PlanSummary:
    slug: str
    total: int
    completed: int
    workstreams: list[str]
    mtime: datetime


def list_plans(project_root: Path) -> list[PlanSummary]:
    """Summaries of every plan under .bart/plans, newest first."""
    plans = []
    for path in _plan_task_files(project_root):
        slug = path.parent.name
        try:
            data = load_tasks(path)
        except TaskStoreError as e:
            logger.warning(f"Skipping unreadable plan {slug}: {e}")
            plans.append(PlanSummary(slug, 0, 0, [], datetime.fromtimestamp(0)))
            continue
        completed, total = completion_counts(data)
        plans.append(PlanSummary(
            slug=slug,
            total=total,
            completed=completed,
            workstreams=workstreams(data),
            mtime=datetime.fromtimestamp(path.stat().st_mtime),
        ))
    plans.sort(key=lambda p: p.mtime, reverse=True)
    return plans
