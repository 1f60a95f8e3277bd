"""
Agent command configuration.

Loads .bart/agents.yaml to determine which CLI runs a task. Each agent name
maps to a command template. If no config file exists the built-in claude and
opencode templates are used.

Templates support one variable, {prompt}. If present it is substituted as a
single CLI argument; if absent the prompt is written to the agent's stdin.

Example agents.yaml:

    agents:
      claude: claude -p --dangerously-skip-permissions --model opus {prompt}
      local: my-agent --yes
"""

import logging
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from bartloop.lib.constants import AGENTS_CONFIG_FILE

logger = logging.getLogger(__name__)


DEFAULT_AGENT_COMMANDS = {
    "claude": "claude -p --dangerously-skip-permissions {prompt}",
    "opencode": "opencode run --dangerously-skip-permissions {prompt}",
}

# Auto-detection order when no agent is configured
DETECT_ORDER = ("opencode", "claude")

_PROMPT_PLACEHOLDER = "__PROMPT_PLACEHOLDER__"


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    agents: dict[str, str] = field(default_factory=lambda: DEFAULT_AGENT_COMMANDS.copy())


def load_agents_config(bart_dir: Optional[Path]) -> AgentsConfig:
    """Load agents.yaml and return AgentsConfig.

    If bart_dir is None or the file doesn't exist, returns defaults.
    """
    if bart_dir is None:
        return AgentsConfig()

    config_path = bart_dir / AGENTS_CONFIG_FILE
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return AgentsConfig()

    agents = DEFAULT_AGENT_COMMANDS.copy()
    if isinstance(data, dict) and isinstance(data.get("agents"), dict):
        for name, template in data["agents"].items():
            if not isinstance(template, str) or not template.strip():
                logger.warning(f"Ignoring agent '{name}' in {config_path}: command must be a non-empty string")
                continue
            agents[str(name)] = template
    return AgentsConfig(agents=agents)


@dataclass
class AgentCommand:
    """Result of building an agent command."""
    agent: str
    cmd: list[str]  # Command ready for subprocess
    prompt_via_stdin: bool  # True if prompt should be passed via stdin

    def get_stdin_input(self, prompt: str) -> str | None:
        """Return prompt if it should be passed via stdin, else None."""
        return prompt if self.prompt_via_stdin else None


def get_agent_command(config: AgentsConfig, agent: str, prompt: str) -> AgentCommand:
    """Build the command list for an agent with the prompt substituted.

    Raises:
        ValueError: If the agent is unknown.

    Example:
        >>> result = get_agent_command(AgentsConfig(), "claude", "do stuff")
        >>> result.cmd
        ['claude', '-p', '--dangerously-skip-permissions', 'do stuff']
    """
    if agent not in config.agents:
        raise ValueError(f"Unknown agent: {agent}")

    template = config.agents[agent]
    prompt_via_stdin = "{prompt}" not in template

    # Substitute after lexing so quotes in the prompt can't break parsing
    cmd = shlex.split(template.replace("{prompt}", _PROMPT_PLACEHOLDER))
    cmd = [prompt if arg == _PROMPT_PLACEHOLDER else arg for arg in cmd]

    return AgentCommand(agent=agent, cmd=cmd, prompt_via_stdin=prompt_via_stdin)


def get_agent_binary(config: AgentsConfig, agent: str) -> str:
    """Get the binary name for an agent (first element of command)."""
    if agent not in config.agents:
        raise ValueError(f"Unknown agent: {agent}")
    parts = shlex.split(config.agents[agent].replace("{prompt}", _PROMPT_PLACEHOLDER))
    return parts[0] if parts else ""


def check_binary_available(binary: str) -> bool:
    """Check if a binary is available in PATH."""
    return shutil.which(binary) is not None


def resolve_agent(config: AgentsConfig, requested: Optional[str]) -> str:
    """Pick the agent to run: the requested one, else the first installed
    built-in, else claude.

    Raises:
        ValueError: If requested names an agent with no command template.
    """
    if requested:
        if requested not in config.agents:
            known = ", ".join(sorted(config.agents))
            raise ValueError(f"Unknown agent '{requested}' (known: {known})")
        return requested

    for name in DETECT_ORDER:
        if name in config.agents and check_binary_available(get_agent_binary(config, name)):
            return name

    logger.debug("No agent binary found on PATH, defaulting to claude")
    return "claude"
