"""
bart run - Run the next task, a specific task, or loop through a workstream.
"""

import logging
import sys
from pathlib import Path

from bartloop.lib.agents_config import resolve_agent
from bartloop.lib.config import ConfigError, load_config
from bartloop.lib.constants import BART_DIR, STATUS_COMPLETED
from bartloop.lib.scheduler import deps_met
from bartloop.lib.tasks import TaskStoreError, load_tasks, require_task
from bartloop.runner.context import ExecutionContext
from bartloop.runner.controller import (
    TaskNotRunnable,
    install_signal_handlers,
    restore_signal_handlers,
    run_all,
    run_task,
)

logger = logging.getLogger(__name__)


def _build_context(args, project_root: Path, tasks_path: Path) -> ExecutionContext:
    config = load_config(project_root / BART_DIR)
    ctx = ExecutionContext.create(
        project_root=project_root,
        tasks_path=tasks_path,
        agent="claude",
        workstream=args.workstream,
        dry_run=args.dry_run,
        auto_continue=False if args.no_auto_continue else None,
        config=config,
    )
    ctx.agent = resolve_agent(ctx.agents, args.agent or config.agent)
    return ctx


def cmd_run(args, project_root: Path, tasks_path: Path) -> int:
    """Run one task (by id) or every eligible task."""
    try:
        data = load_tasks(tasks_path)
        ctx = _build_context(args, project_root, tasks_path)
    except (TaskStoreError, ConfigError, ValueError) as e:
        print(f"ERROR: {e}")
        return 2

    if args.task:
        try:
            task = require_task(data, args.task)
        except TaskStoreError as e:
            print(f"ERROR: {e}")
            return 2
        if not deps_met(data, task.id):
            print(f"WARNING: {task.id} has unfinished dependencies: {', '.join(task.depends_on)}")

    completed = [t for t in data.tasks if t.status == STATUS_COMPLETED]
    if completed and not args.task:
        print(f"Previously completed ({len(completed)}):")
        for t in completed:
            print(f"  {t.id}: {t.title}")
        print()

    previous = install_signal_handlers(ctx)
    try:
        if args.task:
            try:
                outcome = run_task(ctx, args.task)
            except TaskNotRunnable as e:
                print(f"ERROR: {e}. Use 'bart reset {e.task_id}' to run it again.")
                return 2
            if outcome.status == "error":
                return outcome.exit_code or 1
            if outcome.status == "rate_limited":
                print(f"Rate limited; run 'bart run {outcome.task_id}' again once the limit resets.")
                return outcome.exit_code
            return 0

        summary = run_all(ctx)
        if summary.failed:
            print(f"Failed: {', '.join(summary.failed)}", file=sys.stderr)
        return 0
    except TaskStoreError as e:
        print(f"ERROR: {e}")
        return 2
    finally:
        restore_signal_handlers(previous)
