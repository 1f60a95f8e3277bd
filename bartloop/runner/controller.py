"""
Execution controller.

Runs one agent per task, persists every status transition, appends
outcomes to the history ledger and the specialist model, and keeps going
until the workstream is done, blocked, stopped or out of iterations.

Only one task runs at a time per process. Parallel workstreams are run by
separate processes with disjoint --workstream filters.
"""

import logging
import signal
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from bartloop import notifications
from bartloop.lib.agents_config import get_agent_command
from bartloop.lib.constants import (
    EVENT_COMPLETED,
    EVENT_ERROR,
    EVENT_RESET,
    MILESTONES,
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
)
from bartloop.lib.history import (
    DEFAULT_SPECIALIST,
    HistoryEntry,
    append_history,
    check_escalation,
    count_resets_for_task,
    load_history,
)
from bartloop.lib.model import SpecialistModel, SpecialistModelError
from bartloop.lib.prompts import render_task_prompt, specialist_section
from bartloop.lib.scheduler import blocking_workstreams, find_next_task, pending_tasks
from bartloop.lib.specialists import Specialist, find_specialist, match_specialist
from bartloop.lib.tasks import (
    Task,
    TasksData,
    TaskStoreError,
    completion_counts,
    completion_percent,
    load_tasks,
    now_iso,
    plan_slug_for,
    require_task,
    tasks_in_workstream,
    update_task,
)
from bartloop.runner.agent import AgentLaunchError, launch_agent, terminate_agent
from bartloop.runner.context import ExecutionContext
from bartloop.workflow.fsm import TaskFSM

logger = logging.getLogger(__name__)


class TaskNotRunnable(Exception):
    """The task exists but is not pending."""

    def __init__(self, task_id: str, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(f"Task {task_id} is {status}, not pending")


@dataclass
class TaskOutcome:
    task_id: str
    status: str  # completed, error, rate_limited, interrupted or dry_run
    exit_code: int = 0
    duration_ms: Optional[int] = None
    specialist: Optional[str] = None


@dataclass
class RunSummary:
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)
    rate_limited: int = 0
    iterations: int = 0
    stop_reason: str = ""  # done, blocked, stop_requested, timeout, declined, interrupted, max_iterations
    blocked_on: list[str] = field(default_factory=list)
    all_done: bool = False


# --- Specialist and prompt ---

def _load_model(ctx: ExecutionContext) -> Optional[SpecialistModel]:
    try:
        return SpecialistModel.load(ctx.model_path)
    except SpecialistModelError as e:
        logger.warning(f"{e}; learned matching and model updates disabled")
        return None


def resolve_specialist(ctx: ExecutionContext, task: Task,
                       model: Optional[SpecialistModel]) -> Optional[Specialist]:
    """The task's assigned specialist, or an automatic match which is then
    saved on the task."""
    specialists = ctx.profiles.specialists()
    if task.specialist:
        found = find_specialist(specialists, task.specialist)
        if found is None:
            logger.warning(f"Specialist '{task.specialist}' for {task.id} not found; using default executor")
        return found

    match = match_specialist(task, specialists, model)
    if match is None:
        return None
    logger.info(f"Matched {task.id} to {match.specialist.name} ({match.reason}, {match.confidence:.0%})")
    if not ctx.dry_run:
        update_task(ctx.tasks_path, task.id, specialist=match.specialist.name)
        task.specialist = match.specialist.name
    return match.specialist


def build_prompt(ctx: ExecutionContext, task: Task, specialist: Optional[Specialist]) -> str:
    section = ""
    if specialist is not None:
        described = ctx.profiles.describe(specialist.name)
        description = described[0] if described else specialist.description
        section = specialist_section(specialist.name, specialist.type, description)
    return render_task_prompt(task, section, ctx.bart_dir)


# --- Milestones ---

def seed_milestones(data: TasksData, percent: Optional[int] = None) -> set[int]:
    """Thresholds already reached, so a resumed run does not re-fire them."""
    if percent is None:
        percent = completion_percent(data)
    return {m for m in MILESTONES if percent >= m}


def check_milestones(ctx: ExecutionContext, data: TasksData) -> list[int]:
    """Fire each newly crossed threshold once. Percentages are over the
    whole task document."""
    completed, total = completion_counts(data)
    if total == 0:
        return []

    if ctx.fired_milestones is None:
        # Single-task run: seed from where we were before this completion
        previous = round(max(0, completed - 1) / total * 100)
        ctx.fired_milestones = seed_milestones(data, previous)

    percent = round(completed / total * 100)
    fired = []
    for threshold in MILESTONES:
        if percent >= threshold and threshold not in ctx.fired_milestones:
            ctx.fired_milestones.add(threshold)
            fired.append(threshold)
            active = sorted({t.workstream for t in data.tasks
                             if t.status in (STATUS_PENDING, STATUS_IN_PROGRESS)})
            print(f"Milestone: {threshold}% complete ({completed}/{total})")
            ctx.notify(notifications.MILESTONE, {
                "percent": threshold,
                "completed": completed,
                "total": total,
                "active_workstreams": active,
            })
    return fired


# --- Single task ---

def _duration_ms(started_at: Optional[str]) -> Optional[int]:
    if not started_at:
        return None
    try:
        started = datetime.fromisoformat(started_at)
    except ValueError:
        return None
    return int((datetime.now() - started).total_seconds() * 1000)


def _history_entry(ctx: ExecutionContext, task: Task, event: str,
                   duration_ms: Optional[int], resets: int) -> HistoryEntry:
    return HistoryEntry(
        timestamp=now_iso(),
        event=event,
        task_id=task.id,
        workstream=task.workstream,
        plan_slug=ctx.plan_slug,
        specialist=task.specialist,
        duration_ms=duration_ms,
        resets=resets,
        files=list(task.files),
        title=task.title,
    )


def _record_model(model: Optional[SpecialistModel], task: Task, success: bool) -> None:
    if model is None:
        return
    try:
        model.record(task.specialist or DEFAULT_SPECIALIST, task, success)
    except OSError as e:
        logger.warning(f"Could not update specialist model: {e}")


def _invoke(ctx: ExecutionContext, prompt: str, cwd: Path) -> tuple[int, Optional[str]]:
    """Run the agent to completion. Returns (exit code, launch error)."""
    command = get_agent_command(ctx.agents, ctx.agent, prompt)
    try:
        proc = launch_agent(command, prompt, cwd)
    except AgentLaunchError as e:
        return 1, str(e)
    ctx.child = proc
    try:
        return proc.wait(), None
    finally:
        ctx.child = None


def _on_success(ctx: ExecutionContext, fsm: TaskFSM, model: Optional[SpecialistModel]) -> TaskOutcome:
    fsm.complete()
    data = load_tasks(ctx.tasks_path)
    task = require_task(data, fsm.task_id)
    duration = _duration_ms(task.started_at)

    history = load_history(ctx.bart_dir)
    resets = count_resets_for_task(history, task.id, ctx.plan_slug)
    append_history(ctx.bart_dir, _history_entry(ctx, task, EVENT_COMPLETED, duration, resets))
    _record_model(model, task, True)

    print(f"Task {task.id} marked as completed")
    ctx.notify(notifications.TASK_COMPLETED, {"task_id": task.id, "title": task.title})

    check_milestones(ctx, data)

    completed, total = completion_counts(data, task.workstream)
    if completed == total:
        print(f"Workstream {task.workstream} completed!")
        ctx.notify(notifications.WORKSTREAM_COMPLETED, {"workstream": task.workstream, "total": total})

    return TaskOutcome(task.id, STATUS_COMPLETED, 0, duration, task.specialist)


def _on_failure(ctx: ExecutionContext, fsm: TaskFSM, model: Optional[SpecialistModel],
                exit_code: int, message: str) -> TaskOutcome:
    fsm.fail(error=message)
    task = require_task(load_tasks(ctx.tasks_path), fsm.task_id)
    duration = _duration_ms(task.started_at)

    history = load_history(ctx.bart_dir)
    resets = count_resets_for_task(history, task.id, ctx.plan_slug)
    append_history(ctx.bart_dir, _history_entry(ctx, task, EVENT_ERROR, duration, resets))
    _record_model(model, task, False)

    print(f"Task {task.id} failed: {message}", file=sys.stderr)
    ctx.notify(notifications.TASK_ERROR, {
        "task_id": task.id,
        "title": task.title,
        "error": message,
        "attempt": resets + 1,
    })

    check = check_escalation(load_history(ctx.bart_dir), task.id, task.workstream, ctx.plan_slug)
    if check.repeated_task_failure:
        ctx.notify(notifications.CRITICAL, {
            "message": f"Task {task.id} has failed {check.failures} times.\n"
                       f"Workstream: {task.workstream}\nTask: {task.title}",
        })
    elif check.workstream_failing:
        ctx.notify(notifications.CRITICAL, {
            "message": f"{check.errored_in_workstream} distinct tasks have errored in workstream "
                       f"{task.workstream}.\nLatest failure: {task.id} - {task.title}",
        })

    return TaskOutcome(task.id, STATUS_ERROR, exit_code, duration, task.specialist)


def _on_rate_limit(fsm: TaskFSM, task: Task, exit_code: int) -> TaskOutcome:
    # Not a failure: no history entry, no model update, no escalation
    fsm.interrupt()
    print(f"Agent hit a rate limit on {task.id}; task returned to pending")
    return TaskOutcome(task.id, "rate_limited", exit_code, specialist=task.specialist)


def run_task(ctx: ExecutionContext, task_id: str) -> TaskOutcome:
    """Run one pending task through the agent and record the outcome.

    Raises:
        TaskNotFound: unknown task id
        TaskNotRunnable: task is not pending
    """
    data = load_tasks(ctx.tasks_path)
    task = require_task(data, task_id)
    if task.status != STATUS_PENDING:
        raise TaskNotRunnable(task.id, task.status)

    model = _load_model(ctx)
    specialist = resolve_specialist(ctx, task, model)
    prompt = build_prompt(ctx, task, specialist)

    if ctx.dry_run:
        print(f"[dry-run] Would run {task.id} with {ctx.agent}"
              + (f" as {specialist.name}" if specialist else ""))
        print(prompt)
        return TaskOutcome(task.id, "dry_run", specialist=task.specialist)

    cwd = Path(data.project_root) if data.project_root else ctx.project_root

    fsm = TaskFSM(ctx.tasks_path, task.id)
    fsm.start()
    ctx.current_task_id = task.id
    print(f"Starting task: {task.id} - {task.title}")
    print(f"Working directory: {cwd}  Agent: {ctx.agent}")

    try:
        exit_code, launch_error = _invoke(ctx, prompt, cwd)

        if ctx.shutting_down:
            # The shutdown handler has already put the task back to pending
            return TaskOutcome(task.id, "interrupted", exit_code, specialist=task.specialist)

        if exit_code == 0:
            return _on_success(ctx, fsm, model)
        if ctx.config.rate_limit_exit_code and exit_code == ctx.config.rate_limit_exit_code:
            return _on_rate_limit(fsm, task, exit_code)
        message = launch_error or f"Agent exited with code {exit_code}"
        return _on_failure(ctx, fsm, model, exit_code, message)
    finally:
        ctx.current_task_id = None


# --- Reset ---

def reset_task(tasks_path: Path, bart_dir: Path, task_id: str) -> HistoryEntry:
    """Put a task back to pending from any status and log the reset.

    Each reset appends one history entry whose resets count is one more
    than the previous resets for this task in this plan.
    """
    plan_slug = plan_slug_for(tasks_path)
    fsm = TaskFSM(tasks_path, task_id)
    fsm.reset()

    task = require_task(load_tasks(tasks_path), task_id)
    previous = count_resets_for_task(load_history(bart_dir), task_id, plan_slug)
    entry = HistoryEntry(
        timestamp=now_iso(),
        event=EVENT_RESET,
        task_id=task.id,
        workstream=task.workstream,
        plan_slug=plan_slug,
        specialist=task.specialist,
        duration_ms=None,
        resets=previous + 1,
        files=list(task.files),
        title=task.title,
    )
    append_history(bart_dir, entry)
    return entry


# --- Recovery and shutdown ---

def recover_stale_tasks(ctx: ExecutionContext) -> list[str]:
    """Return in_progress tasks in scope to pending.

    Only call while owning the run lock: without it another live process
    may be running those tasks.
    """
    data = load_tasks(ctx.tasks_path)
    recovered = []
    for task in tasks_in_workstream(data, ctx.workstream):
        if task.status != STATUS_IN_PROGRESS:
            continue
        TaskFSM(ctx.tasks_path, task.id).recover()
        recovered.append(task.id)
        print(f"Recovered stale task {task.id} (was in progress)")
    return recovered


def handle_shutdown(ctx: ExecutionContext, signum: int) -> int:
    """Stop the agent, put the current task back to pending and release
    the lock. Returns the exit status for the process. Idempotent."""
    exit_code = 128 + signum
    if ctx.shutting_down:
        return exit_code
    ctx.shutting_down = True
    logger.info(f"Received signal {signum}, shutting down")

    if ctx.child is not None:
        terminate_agent(ctx.child, ctx.config.kill_grace_seconds)

    if ctx.current_task_id is not None:
        try:
            fsm = TaskFSM(ctx.tasks_path, ctx.current_task_id)
            if fsm.can("interrupt"):
                fsm.interrupt()
                print(f"\nTask {ctx.current_task_id} returned to pending")
        except TaskStoreError as e:
            logger.error(f"Could not revert task {ctx.current_task_id}: {e}")

    if ctx.owns_lock:
        ctx.lock.release()
        ctx.owns_lock = False

    return exit_code


def install_signal_handlers(ctx: ExecutionContext) -> dict:
    """Route SIGINT/SIGTERM to handle_shutdown. Returns previous handlers."""
    def _handler(signum, frame):
        sys.exit(handle_shutdown(ctx, signum))

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)
    return previous


def restore_signal_handlers(previous: dict) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


# --- Unattended loop ---

def wait_for_dependencies(ctx: ExecutionContext) -> tuple[Optional[str], str]:
    """Poll until a task becomes eligible. Returns (task id, "") or
    (None, reason) with reason one of done, stop_requested, timeout."""
    interval = max(ctx.config.poll_interval, 1)
    print(f"Waiting for dependencies (checking every {interval}s, up to {ctx.config.poll_timeout}s)...")
    waited = 0
    while waited < ctx.config.poll_timeout:
        ctx.sleep(interval)
        waited += interval

        if ctx.consume_stop_request():
            return None, "stop_requested"

        data = load_tasks(ctx.tasks_path)
        next_id = find_next_task(data, ctx.workstream)
        if next_id:
            print("Dependencies resolved, continuing")
            return next_id, ""

        if not pending_tasks(data, ctx.workstream):
            return None, "done"

        running = [t for t in data.tasks if t.status == STATUS_IN_PROGRESS]
        if running:
            print(f"Waiting... ({waited}s) [{running[0].id}: {running[0].title}]")
        else:
            print(f"Waiting... ({waited}s)")

    print(f"Timeout reached ({ctx.config.poll_timeout}s). Stopping.")
    return None, "timeout"


def wait_for_rate_limit(ctx: ExecutionContext) -> bool:
    """Sleep out a rate limit in poll-sized steps. Returns False if a stop
    was requested meanwhile."""
    interval = max(ctx.config.poll_interval, 1)
    wait = ctx.config.rate_limit_wait
    print(f"Rate limited. Waiting {wait // 60}m ({wait}s) before retrying...")
    waited = 0
    while waited < wait:
        step = min(interval, wait - waited)
        ctx.sleep(step)
        waited += step
        if ctx.consume_stop_request():
            return False
    print("Retrying task")
    return True


def _report_blocked(ctx: ExecutionContext, data: TasksData, blockers: list[str]) -> None:
    for task in pending_tasks(data, ctx.workstream):
        waiting = []
        for dep_id in task.depends_on:
            dep = next((t for t in data.tasks if t.id == dep_id), None)
            status = dep.status if dep else "missing"
            waiting.append(f"{dep_id} ({status})")
        if waiting:
            print(f"  {task.id}: waiting on [{', '.join(waiting)}]")
    print(f"Waiting on tasks from workstream(s): {', '.join(blockers)}")
    print("These will not be auto-run. Run them in their own workstream, or run without --workstream.")
    ctx.notify(notifications.WORKSTREAM_BLOCKED, {
        "workstream": ctx.workstream or "all",
        "blocked_on": blockers,
    })


def run_all(ctx: ExecutionContext) -> RunSummary:
    """Run eligible tasks until done, blocked, stopped or out of iterations.

    Failed tasks are recorded and skipped; the loop moves on to the next
    eligible task.
    """
    summary = RunSummary()

    ctx.owns_lock = ctx.lock.acquire()
    if not ctx.owns_lock:
        owner = ctx.lock.owner_pid()
        print(f"Another bart process (pid {owner}) holds the run lock; skipping stale-task recovery")

    try:
        if ctx.owns_lock and not ctx.dry_run:
            summary.recovered = recover_stale_tasks(ctx)

        ctx.fired_milestones = seed_milestones(load_tasks(ctx.tasks_path))
        retry_id = None

        while True:
            if summary.iterations >= ctx.config.max_iterations:
                print(f"Reached iteration limit ({ctx.config.max_iterations}). Stopping.")
                summary.stop_reason = "max_iterations"
                break

            if ctx.consume_stop_request():
                print("Stop requested. Stopping.")
                summary.stop_reason = "stop_requested"
                break

            if retry_id is not None:
                next_id, retry_id = retry_id, None
            else:
                next_id = find_next_task(load_tasks(ctx.tasks_path), ctx.workstream)
            if next_id is None:
                data = load_tasks(ctx.tasks_path)
                if not pending_tasks(data, ctx.workstream):
                    summary.stop_reason = "done"
                    break
                blockers = blocking_workstreams(data, ctx.workstream)
                if blockers:
                    _report_blocked(ctx, data, blockers)
                    summary.stop_reason = "blocked"
                    summary.blocked_on = blockers
                    break
                next_id, reason = wait_for_dependencies(ctx)
                if next_id is None:
                    summary.stop_reason = reason
                    break

            summary.iterations += 1
            try:
                outcome = run_task(ctx, next_id)
            except TaskNotRunnable as e:
                # Another process picked it up between our read and start
                logger.info(str(e))
                continue

            if outcome.status == "interrupted":
                summary.stop_reason = "interrupted"
                break
            if outcome.status == "rate_limited":
                summary.rate_limited += 1
                if not wait_for_rate_limit(ctx):
                    summary.stop_reason = "stop_requested"
                    break
                retry_id = outcome.task_id
                continue
            if outcome.status == STATUS_COMPLETED:
                summary.completed.append(outcome.task_id)
            elif outcome.status == STATUS_ERROR:
                summary.failed.append(outcome.task_id)
            elif ctx.dry_run:
                # Nothing changes state in a dry run; one preview is all we can show
                summary.stop_reason = "dry_run"
                break

            if outcome.status == STATUS_COMPLETED and not ctx.auto_continue:
                if not ctx.confirm("Continue with next task? (Y/n) "):
                    print("Stopping at user request")
                    summary.stop_reason = "declined"
                    break

        data = load_tasks(ctx.tasks_path)
        completed, total = completion_counts(data, ctx.workstream)
        summary.all_done = total > 0 and completed == total
        if summary.all_done and summary.completed:
            print("All tasks completed!")
            ctx.notify(notifications.ALL_DONE, {"total": total})
        else:
            print("Run complete. Use 'bart status' to see progress.")
    finally:
        if ctx.owns_lock:
            ctx.lock.release()
            ctx.owns_lock = False

    return summary
