"""
History ledger for bart.

Append-only JSONL record of task completions, errors and resets, shared by
every plan in a project and isolated per plan by plan_slug. Entries are
never rewritten; unreadable lines are skipped on load.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from bartloop.lib.constants import (
    ESCALATION_THRESHOLD,
    EVENT_COMPLETED,
    EVENT_ERROR,
    EVENT_RESET,
    HISTORY_FILE,
    LEGACY_PLAN_SLUG,
)
from bartloop.lib.validate import ValidationError, validate

logger = logging.getLogger(__name__)

# Stats bucket for tasks that ran without a specialist
DEFAULT_SPECIALIST = "(default)"


@dataclass
class HistoryEntry:
    """One ledger line."""
    timestamp: str
    event: str  # "completed", "error" or "reset"
    task_id: str
    workstream: str = ""
    plan_slug: str = LEGACY_PLAN_SLUG
    specialist: Optional[str] = None
    status: str = ""
    duration_ms: Optional[int] = None  # None for resets
    resets: int = 0  # Prior resets for this task+plan
    files: list[str] = field(default_factory=list)
    title: str = ""

    def __post_init__(self):
        if not self.status:
            self.status = self.event


def history_path(bart_dir: Path) -> Path:
    return bart_dir / HISTORY_FILE


def append_history(bart_dir: Path, entry: HistoryEntry) -> None:
    """Append one entry to the ledger."""
    bart_dir.mkdir(parents=True, exist_ok=True)
    with open(history_path(bart_dir), "a") as f:
        f.write(json.dumps(asdict(entry)) + "\n")
        f.flush()


def load_history(bart_dir: Path) -> list[HistoryEntry]:
    """Load all entries in file order. Skips corrupted lines."""
    path = history_path(bart_dir)
    if not path.exists():
        return []

    entries = []
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
            validate(data, "history_entry")
            known = {k: v for k, v in data.items() if k in HistoryEntry.__dataclass_fields__}
            entries.append(HistoryEntry(**known))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(f"Skipping corrupted history line {line_num} in {path}: {e}")
    return entries


def count_resets_for_task(history: list[HistoryEntry], task_id: str, plan_slug: str) -> int:
    """Number of reset events recorded for task_id within one plan."""
    return sum(
        1 for e in history
        if e.event == EVENT_RESET and e.task_id == task_id and e.plan_slug == plan_slug
    )


def count_distinct_errored_tasks(history: list[HistoryEntry], workstream: str, plan_slug: str) -> int:
    """Number of tasks in a workstream+plan whose latest outcome is an error.

    Reflects currently failing tasks: an error followed by a later completion
    for the same task no longer counts. Resets are not outcomes.
    """
    latest: dict[str, str] = {}
    for e in history:
        if e.workstream != workstream or e.plan_slug != plan_slug:
            continue
        if e.event in (EVENT_COMPLETED, EVENT_ERROR):
            latest[e.task_id] = e.event
    return sum(1 for event in latest.values() if event == EVENT_ERROR)


@dataclass
class EscalationCheck:
    """Result of evaluating escalation after a failure."""
    failures: int  # Failures of this task, including the current one
    errored_in_workstream: int

    @property
    def repeated_task_failure(self) -> bool:
        return self.failures >= ESCALATION_THRESHOLD

    @property
    def workstream_failing(self) -> bool:
        return self.errored_in_workstream >= ESCALATION_THRESHOLD

    @property
    def should_escalate(self) -> bool:
        return self.repeated_task_failure or self.workstream_failing


def check_escalation(history: list[HistoryEntry], task_id: str, workstream: str, plan_slug: str) -> EscalationCheck:
    """Evaluate escalation for a task that just failed.

    Expects the failure's own error entry to already be in history.
    """
    resets = count_resets_for_task(history, task_id, plan_slug)
    return EscalationCheck(
        failures=resets + 1,
        errored_in_workstream=count_distinct_errored_tasks(history, workstream, plan_slug),
    )


@dataclass
class SpecialistStats:
    """Aggregated outcomes for one specialist."""
    specialist: str
    total: int = 0  # completed + errored
    completed: int = 0
    errored: int = 0
    total_resets: int = 0
    total_duration_ms: int = 0

    @property
    def reset_rate(self) -> float:
        return self.total_resets / self.total if self.total else 0.0

    @property
    def success_rate(self) -> float:
        return self.completed / self.total if self.total else 0.0

    @property
    def avg_duration_ms(self) -> Optional[float]:
        return self.total_duration_ms / self.completed if self.completed else None


def compute_specialist_stats(history: list[HistoryEntry]) -> dict[str, SpecialistStats]:
    """Per-specialist outcome counts. Tasks without a specialist are
    grouped under DEFAULT_SPECIALIST."""
    stats: dict[str, SpecialistStats] = {}
    for e in history:
        name = e.specialist or DEFAULT_SPECIALIST
        s = stats.setdefault(name, SpecialistStats(specialist=name))
        if e.event == EVENT_COMPLETED:
            s.total += 1
            s.completed += 1
            if e.duration_ms:
                s.total_duration_ms += e.duration_ms
        elif e.event == EVENT_ERROR:
            s.total += 1
            s.errored += 1
        elif e.event == EVENT_RESET:
            s.total_resets += 1
    return stats


def format_duration(seconds: float) -> str:
    """Format seconds as human-readable duration."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes < 60:
        return f"{minutes}m {secs:.0f}s"
    hours = minutes // 60
    mins = minutes % 60
    return f"{hours}h {mins}m"
