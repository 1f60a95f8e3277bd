"""Task state machine using transitions library.

Each trigger persists the new status, together with the timestamp and
error fields that go with it, to the task document.

Usage:
    from bartloop.workflow.fsm import TaskFSM

    fsm = TaskFSM(tasks_path, "B3")
    fsm.start()                    # pending -> in_progress, sets started_at
    fsm.fail(error="exit code 1")  # in_progress -> error
    fsm.reset()                    # any -> pending, clears timestamps and error
"""

import logging
from pathlib import Path
from typing import Callable

from transitions import Machine

from bartloop.lib.constants import (
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    TASK_STATUSES,
)
from bartloop.lib.tasks import load_tasks, now_iso, require_task, update_task

logger = logging.getLogger(__name__)


STATES = list(TASK_STATUSES)

TRANSITIONS = [
    {"trigger": "start", "source": STATUS_PENDING, "dest": STATUS_IN_PROGRESS},
    {"trigger": "complete", "source": STATUS_IN_PROGRESS, "dest": STATUS_COMPLETED},
    {"trigger": "fail", "source": STATUS_IN_PROGRESS, "dest": STATUS_ERROR},

    # Operator recovery, permitted from any status
    {"trigger": "reset", "source": "*", "dest": STATUS_PENDING},

    # Stale task left in_progress by a dead process
    {"trigger": "recover", "source": STATUS_IN_PROGRESS, "dest": STATUS_PENDING},

    # Signal received while the task was running
    {"trigger": "interrupt", "source": STATUS_IN_PROGRESS, "dest": STATUS_PENDING},
]


def _fields_for(trigger: str, kwargs: dict) -> dict:
    """Task fields written alongside the status for a trigger."""
    if trigger == "start":
        return {"started_at": now_iso(), "completed_at": None, "error": None}
    if trigger == "complete":
        return {"completed_at": now_iso(), "error": None}
    if trigger == "fail":
        return {"error": kwargs.get("error") or "Agent failed"}
    if trigger == "reset":
        return {"started_at": None, "completed_at": None, "error": None}
    # recover, interrupt
    return {"started_at": None}


class TaskFSM:
    """State machine for one task's status.

    Wraps the transitions library with task-specific logic:
    - Loads initial state from the task document
    - Persists state changes to the task document
    - Logs all transitions
    """

    def __init__(self, tasks_path: Path, task_id: str,
                 on_transition: Callable[[str, str, str], None] | None = None):
        """Initialize FSM for a task.

        Args:
            tasks_path: Path to tasks.json
            task_id: Task to manage
            on_transition: Optional callback(from_state, to_state, trigger) called after transitions

        Raises:
            TaskNotFound: if task_id is not in the document
        """
        self.tasks_path = tasks_path
        self.task_id = task_id
        self.on_transition = on_transition

        initial = require_task(load_tasks(tasks_path), task_id).status
        if initial not in STATES:
            logger.warning(f"[FSM] {task_id}: Unknown status '{initial}', defaulting to 'pending'")
            initial = STATUS_PENDING

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",  # Callback after any transition
        )

    def on_state_change(self, event) -> None:
        """Callback after any state transition.

        Persists state to disk and logs the transition.
        """
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.task_id}: {from_state} -> {to_state} ({trigger})")

        update_task(self.tasks_path, self.task_id, status=self.state, **_fields_for(trigger, event.kwargs))

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        """Get list of triggers available in current state."""
        return self.machine.get_triggers(self.state)
