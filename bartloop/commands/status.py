"""
bart status - Show per-workstream progress, next tasks and errors.
"""

from pathlib import Path

from bartloop.lib.constants import STATUS_COMPLETED, STATUS_ERROR, STATUS_IN_PROGRESS, STATUS_PENDING
from bartloop.lib.scheduler import deps_met
from bartloop.lib.tasks import (
    TaskStoreError,
    completion_counts,
    load_tasks,
    plan_slug_for,
    tasks_in_workstream,
    workstreams,
)

BAR_LENGTH = 20


def progress_bar(percent: int, length: int = BAR_LENGTH) -> str:
    filled = round(percent / 100 * length)
    return "█" * filled + "░" * (length - filled)


def cmd_status(args, project_root: Path, tasks_path: Path) -> int:
    """Show progress for the selected plan."""
    try:
        data = load_tasks(tasks_path)
    except TaskStoreError as e:
        print(f"ERROR: {e}")
        return 2

    selected = [args.workstream] if args.workstream else workstreams(data)
    if args.workstream and args.workstream not in workstreams(data):
        print(f"ERROR: No tasks in workstream '{args.workstream}'")
        return 2

    print(f"\nBart Loop Status  (plan: {plan_slug_for(tasks_path)})\n")

    for ws in selected:
        ws_tasks = tasks_in_workstream(data, ws)
        completed, total = completion_counts(data, ws)
        pct = round(completed / total * 100) if total else 0
        print(f"Workstream {ws}: [{progress_bar(pct)}] {pct}% ({completed}/{total})")

        running = [t for t in ws_tasks if t.status == STATUS_IN_PROGRESS]
        for t in running:
            print(f"  ◐ Running: {t.id}: {t.title}")

        next_task = next((t for t in ws_tasks if t.status == STATUS_PENDING and deps_met(data, t.id)), None)
        if next_task:
            print(f"  → Next: {next_task.id}: {next_task.title}")
        elif completed == total:
            print("  ✓ All done!")

    errors = [t for t in data.tasks if t.status == STATUS_ERROR and (not args.workstream or t.workstream == args.workstream)]
    if errors:
        print(f"\nErrors ({len(errors)}):")
        for t in errors:
            print(f"  ✗ {t.id}: {t.title}")
            print(f"    {(t.error or '')[:60]}")
    print()
    return 0
