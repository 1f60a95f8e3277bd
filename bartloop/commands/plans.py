"""
bart plans - List plan executions under .bart/plans.
"""

from pathlib import Path
from typing import Optional

from bartloop.lib.tasks import list_plans, plan_slug_for


def cmd_plans(args, project_root: Path, active_tasks_path: Optional[Path] = None) -> int:
    """List plans, newest first, marking the one commands would use."""
    plans = list_plans(project_root)
    if not plans:
        print("No plans found under .bart/plans/.")
        return 0

    active_slug = plan_slug_for(active_tasks_path) if active_tasks_path else None

    print(f"\nPlans ({len(plans)}):\n")
    for plan in plans:
        pct = round(plan.completed / plan.total * 100) if plan.total else 0
        icon = "✓" if plan.total and plan.completed == plan.total else "○"
        active = "  (active)" if plan.slug == active_slug else ""
        ws = ", ".join(plan.workstreams) or "-"
        print(f"  {icon} {plan.slug}{active}")
        print(f"     Tasks: {plan.completed}/{plan.total} done ({pct}%)  |  "
              f"Workstreams: {ws}  |  {plan.mtime.date().isoformat()}")
    print("\nUse 'bart --plan <slug> status' to view a specific plan.")
    return 0
