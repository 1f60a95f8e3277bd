"""
Agent process supervision.

The agent is opaque: it receives a prompt, inherits our stdio, and reports
back only through its exit code. There is no timeout; a hung agent runs
until a signal stops it.
"""

import logging
import subprocess
from pathlib import Path

from bartloop.lib.agents_config import AgentCommand

logger = logging.getLogger(__name__)


class AgentLaunchError(Exception):
    """The agent binary could not be started."""
    pass


def launch_agent(command: AgentCommand, prompt: str, cwd: Path) -> subprocess.Popen:
    """Start the agent. stdout/stderr are inherited; stdin carries the
    prompt only when the command template has no {prompt} slot."""
    logger.debug(f"Launching {command.cmd[0]} in {cwd}")
    try:
        proc = subprocess.Popen(
            command.cmd,
            cwd=cwd,
            stdin=subprocess.PIPE if command.prompt_via_stdin else None,
            text=True,
        )
    except OSError as e:
        raise AgentLaunchError(f"Failed to start agent '{command.cmd[0]}': {e}") from e

    if command.prompt_via_stdin:
        try:
            proc.stdin.write(prompt)
            proc.stdin.close()
        except BrokenPipeError:
            logger.warning("Agent closed stdin before reading the prompt")
    return proc


def terminate_agent(proc: subprocess.Popen, grace_seconds: float) -> int:
    """SIGTERM, then SIGKILL if still running after grace_seconds.

    Returns the child's exit status.
    """
    if proc.poll() is not None:
        return proc.returncode

    logger.info(f"Terminating agent (pid {proc.pid})")
    proc.terminate()
    try:
        return proc.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.warning(f"Agent did not exit within {grace_seconds}s, killing")
        proc.kill()
        return proc.wait()
