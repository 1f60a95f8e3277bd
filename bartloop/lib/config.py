"""
Configuration loaders for bart.

Project settings live in .bart/project.env as KEY=value lines. The file is
parsed without shell execution; values that look like shell injection are
rejected. Every setting has a default, so the file is optional.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from bartloop.lib.constants import (
    KILL_GRACE_SECONDS,
    MAX_ITERATIONS,
    POLL_INTERVAL_SECONDS,
    POLL_TIMEOUT_SECONDS,
    PROJECT_ENV_FILE,
    RATE_LIMIT_EXIT_CODE,
    RATE_LIMIT_WAIT_SECONDS,
)

logger = logging.getLogger(__name__)

FORBIDDEN_PATTERNS = [
    r'`',           # backticks
    r'\$\(',        # command substitution
    r'\$\{',        # variable expansion
    r';',           # command chaining
    r'&&',          # AND chaining
    r'\|',          # pipe (and ||)
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')

KNOWN_AGENTS = ("claude", "opencode")


class ConfigError(Exception):
    """project.env is malformed or holds an invalid value."""
    pass


def _parse_line(line: str, lineno: int) -> Optional[tuple[str, str]]:
    line = line.strip()
    if not line or line.startswith('#'):
        return None
    if '=' not in line:
        raise ConfigError(f"Line {lineno}: Invalid syntax (no '=')")

    key, _, value = line.partition('=')
    key = key.strip()
    value = value.strip()

    if not KEY_PATTERN.match(key):
        raise ConfigError(f"Line {lineno}: Invalid key '{key}'")

    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        value = value[1:-1]

    for pattern in FORBIDDEN_PATTERNS:
        if re.search(pattern, value):
            raise ConfigError(f"Line {lineno}: Forbidden pattern in value for {key}")

    return key, value


def load_env(filepath: Path) -> dict[str, str]:
    """Parse an env file safely. A missing file yields an empty dict."""
    if not filepath.exists():
        return {}
    result = {}
    for lineno, line in enumerate(filepath.read_text().splitlines(), 1):
        parsed = _parse_line(line, lineno)
        if parsed:
            result[parsed[0]] = parsed[1]
    return result


def update_env(filepath: Path, updates: dict[str, Optional[str]]) -> None:
    """Set or remove (value None) keys in an env file, keeping other lines."""
    lines = filepath.read_text().splitlines() if filepath.exists() else []
    remaining = dict(updates)
    out = []
    for line in lines:
        key = line.split('=', 1)[0].strip() if '=' in line else None
        if key in remaining:
            value = remaining.pop(key)
            if value is not None:
                out.append(f'{key}="{value}"')
            continue
        out.append(line)
    for key, value in remaining.items():
        if value is not None:
            out.append(f'{key}="{value}"')
    filepath.parent.mkdir(parents=True, exist_ok=True)
    filepath.write_text("\n".join(out) + "\n")


def _bool(env: dict, key: str, default: bool) -> bool:
    if key not in env:
        return default
    return env[key].lower() in ("1", "true", "yes", "on")


def _int(env: dict, key: str, default: int) -> int:
    if key not in env:
        return default
    try:
        value = int(env[key])
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got '{env[key]}'") from None
    if value < 0:
        raise ConfigError(f"{key} must not be negative")
    return value


@dataclass
class BartConfig:
    """Project settings from .bart/project.env"""
    agent: Optional[str] = None  # None = auto-detect
    auto_continue: bool = True
    notifications: bool = True
    poll_interval: int = POLL_INTERVAL_SECONDS
    poll_timeout: int = POLL_TIMEOUT_SECONDS
    max_iterations: int = MAX_ITERATIONS
    kill_grace_seconds: int = KILL_GRACE_SECONDS
    rate_limit_exit_code: int = RATE_LIMIT_EXIT_CODE  # 0 disables rate-limit handling
    rate_limit_wait: int = RATE_LIMIT_WAIT_SECONDS


def load_config(bart_dir: Path) -> BartConfig:
    """Load project.env and return BartConfig.

    Raises:
        ConfigError: on syntax errors or invalid values
    """
    env = load_env(bart_dir / PROJECT_ENV_FILE)

    agent = env.get("AGENT") or None
    if agent is not None and agent not in KNOWN_AGENTS:
        logger.warning(f"AGENT '{agent}' is not a built-in agent; expecting it in agents.yaml")

    return BartConfig(
        agent=agent,
        auto_continue=_bool(env, "AUTO_CONTINUE", True),
        notifications=_bool(env, "NOTIFICATIONS", True),
        poll_interval=_int(env, "POLL_INTERVAL", POLL_INTERVAL_SECONDS),
        poll_timeout=_int(env, "POLL_TIMEOUT", POLL_TIMEOUT_SECONDS),
        max_iterations=_int(env, "MAX_ITERATIONS", MAX_ITERATIONS),
        kill_grace_seconds=_int(env, "KILL_GRACE_SECONDS", KILL_GRACE_SECONDS),
        rate_limit_exit_code=_int(env, "RATE_LIMIT_EXIT_CODE", RATE_LIMIT_EXIT_CODE),
        rate_limit_wait=_int(env, "RATE_LIMIT_WAIT", RATE_LIMIT_WAIT_SECONDS),
    )
