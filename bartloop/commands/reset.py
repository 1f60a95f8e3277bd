"""
bart reset - Put a task (or every errored task) back to pending.

Resets are always permitted and are logged to history; they never erase
earlier history entries.
"""

from pathlib import Path

from bartloop.lib.constants import BART_DIR, STATUS_ERROR
from bartloop.lib.tasks import TaskStoreError, load_tasks, require_task, tasks_with_status
from bartloop.runner.controller import reset_task


def cmd_reset(args, project_root: Path, tasks_path: Path) -> int:
    """Reset one task by id, or all errored tasks with --errors."""
    bart_dir = project_root / BART_DIR

    if not args.task and not args.errors:
        print("ERROR: Give a task id or --errors")
        return 2

    try:
        data = load_tasks(tasks_path)
        if args.errors:
            targets = [t.id for t in tasks_with_status(data, STATUS_ERROR, args.workstream)]
            if not targets:
                print("No errored tasks to reset.")
                return 0
        else:
            targets = [require_task(data, args.task).id]

        for task_id in targets:
            entry = reset_task(tasks_path, bart_dir, task_id)
            print(f"Reset {task_id} to pending (reset #{entry.resets})")
    except TaskStoreError as e:
        print(f"ERROR: {e}")
        return 2

    return 0
