"""
bart stop - Ask running loops to stop after their current task.
"""

from pathlib import Path

from bartloop.lib.constants import BART_DIR, LOCKS_DIR, RUN_LOCK_FILE
from bartloop.runner.context import request_stop
from bartloop.runner.locking import PidFileLock


def cmd_stop(args, project_root: Path) -> int:
    stop_path = request_stop(project_root)
    lock = PidFileLock(project_root / BART_DIR / LOCKS_DIR / RUN_LOCK_FILE)
    if lock.is_held_by_live():
        print(f"Stop requested; process {lock.owner_pid()} will stop after its current task.")
    else:
        print(f"Stop requested ({stop_path}). No run lock holder found; the next loop will stop immediately.")
    return 0
