"""
Desktop notifications for bart.

Uses notify-send (freedesktop compliant) for notifications.
Works with mako, dunst, GNOME, KDE notification daemons.

Delivery is best effort: a missing notify-send or a failing daemon is
logged and never affects task progress.
"""

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)


VALID_URGENCIES = ("low", "normal", "critical")

MAX_NOTIFICATION_LENGTH = 200

# Event kinds dispatched by the execution controller
TASK_COMPLETED = "task_completed"
TASK_ERROR = "task_error"
CRITICAL = "critical"
MILESTONE = "milestone"
WORKSTREAM_COMPLETED = "workstream_completed"
WORKSTREAM_BLOCKED = "workstream_blocked"
ALL_DONE = "all_done"

EVENT_KINDS = (TASK_COMPLETED, TASK_ERROR, CRITICAL, MILESTONE,
               WORKSTREAM_COMPLETED, WORKSTREAM_BLOCKED, ALL_DONE)


def send_desktop(title: str, message: str, urgency: str = "normal"):
    """
    Send desktop notification.

    Args:
        title: Notification title
        message: Notification body
        urgency: One of "low", "normal", "critical"
    """
    if urgency not in VALID_URGENCIES:
        logger.warning(f"Invalid urgency '{urgency}', using 'normal'")
        urgency = "normal"

    if not shutil.which("notify-send"):
        logger.debug("notify-send not found, skipping notification")
        return

    if len(message) > MAX_NOTIFICATION_LENGTH:
        message = message[:MAX_NOTIFICATION_LENGTH] + "..."

    try:
        result = subprocess.run([
            "notify-send",
            "--urgency", urgency,
            "--app-name", "Bart",
            title,
            message
        ], capture_output=True, text=True, timeout=5)

        if result.returncode != 0:
            logger.warning(f"notify-send failed (exit {result.returncode}): {result.stderr}")
    except subprocess.TimeoutExpired:
        logger.warning("notify-send timed out")
    except OSError as e:
        logger.warning(f"Failed to run notify-send: {e}")


def format_event(event: str, payload: dict) -> tuple[str, str, str]:
    """Return (title, message, urgency) for an event."""
    task_id = payload.get("task_id", "?")
    title_text = payload.get("title", "")
    workstream = payload.get("workstream", "?")

    if event == TASK_COMPLETED:
        return f"Bart: {task_id} done", title_text, "low"
    if event == TASK_ERROR:
        attempt = payload.get("attempt", 1)
        message = f"{title_text}\n{payload.get('error', '')}"
        if attempt > 1:
            message += f"\nAttempt {attempt}"
        return f"Bart: {task_id} failed", message, "normal"
    if event == CRITICAL:
        return "Bart: needs attention", payload.get("message", ""), "critical"
    if event == MILESTONE:
        active = ", ".join(payload.get("active_workstreams", [])) or "none"
        return (
            f"Bart: {payload.get('percent')}% complete",
            f"{payload.get('completed')}/{payload.get('total')} tasks done. Active: {active}",
            "low",
        )
    if event == WORKSTREAM_COMPLETED:
        return (
            f"Bart: workstream {workstream}",
            f"All {payload.get('total')} tasks complete",
            "normal",
        )
    if event == WORKSTREAM_BLOCKED:
        blockers = ", ".join(payload.get("blocked_on", []))
        return f"Bart: workstream {workstream}", f"Blocked: waiting on {blockers}", "critical"
    if event == ALL_DONE:
        return "Bart: all tasks complete", f"{payload.get('total')} tasks done", "normal"
    raise ValueError(f"Unknown notification event: {event}")


def notify(event: str, payload: dict):
    """Dispatch an event notification. Never raises."""
    try:
        title, message, urgency = format_event(event, payload)
    except ValueError as e:
        logger.warning(str(e))
        return
    logger.info(f"[notify] {event}: {title}")
    send_desktop(title, message, urgency)
