"""
Execution context for a bart run.

Everything the controller mutates while running (the child process, the
current task, the shutdown flag, fired milestones) lives on one
ExecutionContext threaded through every operation, so the shutdown path
can be driven directly in tests.
"""

import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from bartloop import notifications
from bartloop.lib.agents_config import AgentsConfig, load_agents_config
from bartloop.lib.config import BartConfig, load_config
from bartloop.lib.constants import (
    BART_DIR,
    LOCKS_DIR,
    MODEL_FILE,
    RUN_LOCK_FILE,
    STOP_FILE,
)
from bartloop.lib.specialists import DirectoryProfileSource, ProfileSource
from bartloop.lib.tasks import plan_slug_for
from bartloop.runner.locking import PidFileLock, ProcessLock


def _ask_continue(question: str) -> bool:
    try:
        answer = input(question)
    except EOFError:
        return True
    return answer.strip().lower() != "n"


def _no_notify(event: str, payload: dict) -> None:
    pass


@dataclass
class ExecutionContext:
    """State for one controller process."""
    project_root: Path
    tasks_path: Path
    config: BartConfig
    agents: AgentsConfig
    agent: str
    profiles: ProfileSource
    lock: ProcessLock
    workstream: Optional[str] = None
    dry_run: bool = False
    auto_continue: bool = True

    # Collaborators, swappable in tests
    notify: Callable[[str, dict], None] = notifications.notify
    confirm: Callable[[str], bool] = _ask_continue
    sleep: Callable[[float], None] = time.sleep

    # Mutable run state
    child: Optional[subprocess.Popen] = None
    current_task_id: Optional[str] = None
    shutting_down: bool = False
    owns_lock: bool = False
    fired_milestones: Optional[set[int]] = None  # None until seeded

    @property
    def bart_dir(self) -> Path:
        return self.project_root / BART_DIR

    @property
    def plan_slug(self) -> str:
        return plan_slug_for(self.tasks_path)

    @property
    def stop_path(self) -> Path:
        return self.bart_dir / STOP_FILE

    @property
    def model_path(self) -> Path:
        return self.bart_dir / MODEL_FILE

    @classmethod
    def create(cls, project_root: Path, tasks_path: Path, agent: str,
               workstream: Optional[str] = None, dry_run: bool = False,
               auto_continue: Optional[bool] = None,
               config: Optional[BartConfig] = None) -> "ExecutionContext":
        """Build a context with the project's configuration and on-disk
        collaborators."""
        bart_dir = project_root / BART_DIR
        config = config or load_config(bart_dir)
        return cls(
            project_root=project_root,
            tasks_path=tasks_path,
            config=config,
            agents=load_agents_config(bart_dir),
            agent=agent,
            profiles=DirectoryProfileSource(project_root),
            lock=PidFileLock(bart_dir / LOCKS_DIR / RUN_LOCK_FILE),
            workstream=workstream,
            dry_run=dry_run,
            auto_continue=config.auto_continue if auto_continue is None else auto_continue,
            notify=notifications.notify if config.notifications else _no_notify,
        )

    def consume_stop_request(self) -> bool:
        """True if a stop was requested; the request is consumed."""
        try:
            self.stop_path.unlink()
        except FileNotFoundError:
            return False
        return True


def request_stop(project_root: Path) -> Path:
    """Ask running controllers to stop after their current task."""
    stop_path = project_root / BART_DIR / STOP_FILE
    stop_path.parent.mkdir(parents=True, exist_ok=True)
    stop_path.touch()
    return stop_path
