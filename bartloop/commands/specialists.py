"""
bart specialists - List specialists, their track record, or suggestions for a task.
"""

from pathlib import Path
from typing import Optional

from bartloop.lib.constants import BART_DIR, MODEL_FILE
from bartloop.lib.history import compute_specialist_stats, format_duration, load_history
from bartloop.lib.model import SpecialistModel, SpecialistModelError
from bartloop.lib.specialists import DirectoryProfileSource, score_specialists
from bartloop.lib.tasks import TaskStoreError, load_tasks, require_task

TYPE_ICONS = {"agent": "A", "skill": "S", "command": "C"}

SEARCH_PATHS = [
    ("./.claude/commands/", "Project-local commands"),
    ("./.claude/agents/", "Project-local agents"),
    ("~/.claude/commands/", "Global commands"),
    ("~/.claude/agents/", "Global agents"),
    ("~/.claude/plugins/", "Plugin skills, agents, commands"),
    ("~/.claude/skills/", "Standalone skill files"),
]


def _list(specialists) -> int:
    if not specialists:
        print("\nNo specialists found.")
        print("Specialists are discovered from:")
        for path, label in SEARCH_PATHS:
            print(f"  {path:<22} {label}")
        print()
        return 0

    print(f"\nFound {len(specialists)} specialist(s):\n")
    for s in specialists:
        desc = s.description if len(s.description) <= 60 else s.description[:57] + "..."
        print(f"  [{TYPE_ICONS.get(s.type, '?')}] {s.name}")
        print(f"      {desc}")
        if s.path:
            print(f"      {s.path}")
    print()
    return 0


def _history(bart_dir: Path) -> int:
    stats = compute_specialist_stats(load_history(bart_dir))
    if not stats:
        print("No execution history yet.")
        return 0

    print(f"\n{'Specialist':<28} {'Runs':>5} {'OK':>4} {'Err':>4} {'Resets':>7} {'Success':>8} {'Avg time':>9}")
    for name in sorted(stats, key=lambda n: (-stats[n].total, n)):
        s = stats[name]
        avg = format_duration(s.avg_duration_ms / 1000) if s.avg_duration_ms else "-"
        print(f"{name:<28} {s.total:>5} {s.completed:>4} {s.errored:>4} "
              f"{s.total_resets:>7} {s.success_rate:>8.0%} {avg:>9}")
    print()
    return 0


def _suggest(bart_dir: Path, specialists, tasks_path: Path, task_id: str) -> int:
    task = require_task(load_tasks(tasks_path), task_id)
    try:
        model: Optional[SpecialistModel] = SpecialistModel.load(bart_dir / MODEL_FILE)
    except SpecialistModelError as e:
        print(f"WARNING: {e}")
        model = None

    ranked = score_specialists(
        f"{task.title} {task.description}", task.files, specialists,
        history=load_history(bart_dir), model=model,
    )
    if not ranked:
        print("No specialists found.")
        return 0

    print(f"\nSuggestions for {task.id}: {task.title}\n")
    for r in ranked[:10]:
        reasons = ", ".join(r.reasons) or "-"
        print(f"  {r.score:>4.0%}  {r.specialist.name:<28} {reasons}")
    print()
    return 0


def cmd_specialists(args, project_root: Path, tasks_path: Optional[Path] = None) -> int:
    bart_dir = project_root / BART_DIR

    if args.history:
        return _history(bart_dir)

    specialists = DirectoryProfileSource(project_root).specialists()
    if args.suggest:
        if tasks_path is None:
            print("ERROR: No tasks file found")
            return 2
        try:
            return _suggest(bart_dir, specialists, tasks_path, args.suggest)
        except TaskStoreError as e:
            print(f"ERROR: {e}")
            return 2

    return _list(specialists)
