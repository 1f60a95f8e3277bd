"""
bart requirements - Requirement coverage report.
"""

from pathlib import Path

from bartloop.lib.constants import REQ_COMPLETE, REQ_NONE, REQ_PARTIAL
from bartloop.lib.tasks import TaskStoreError, get_task, load_tasks, requirement_status

ICONS = {REQ_COMPLETE: "✓", REQ_PARTIAL: "◐", REQ_NONE: "○"}


def cmd_requirements(args, project_root: Path, tasks_path: Path) -> int:
    """Show coverage of every requirement, or only gaps with --gaps."""
    try:
        data = load_tasks(tasks_path)
    except TaskStoreError as e:
        print(f"ERROR: {e}")
        return 2

    if not data.requirements:
        print("No requirements in this plan.")
        return 0

    counts = {REQ_COMPLETE: 0, REQ_PARTIAL: 0, REQ_NONE: 0}
    rows = []
    for req in data.requirements:
        status = requirement_status(data, req)
        counts[status] += 1
        if args.gaps and status == REQ_COMPLETE:
            continue
        rows.append((req, status))

    print(f"\nRequirements: {counts[REQ_COMPLETE]} complete, {counts[REQ_PARTIAL]} partial, "
          f"{counts[REQ_NONE]} not started ({len(data.requirements)} total)\n")

    for req, status in rows:
        print(f"  {ICONS[status]} {req.id}: {req.description}")
        if not req.covered_by:
            print("      not covered by any task")
            continue
        parts = []
        for task_id in req.covered_by:
            task = get_task(data, task_id)
            parts.append(f"{task_id} ({task.status if task else 'missing'})")
        print(f"      {', '.join(parts)}")

    if args.gaps and not rows:
        print("  No gaps.")
    print()
    return 0
