"""
bart config - Show or change project settings in .bart/project.env.
"""

from pathlib import Path

from bartloop.lib.agents_config import get_agent_binary, check_binary_available, load_agents_config
from bartloop.lib.config import ConfigError, load_config, update_env
from bartloop.lib.constants import BART_DIR, PROJECT_ENV_FILE


def cmd_config(args, project_root: Path) -> int:
    bart_dir = project_root / BART_DIR
    agents = load_agents_config(bart_dir)

    if args.agent:
        if args.agent not in agents.agents:
            print(f"ERROR: Unknown agent '{args.agent}' (known: {', '.join(sorted(agents.agents))})")
            return 2
        update_env(bart_dir / PROJECT_ENV_FILE, {"AGENT": args.agent})
        print(f"Default agent set to {args.agent}")

    if args.auto_continue is not None:
        update_env(bart_dir / PROJECT_ENV_FILE, {"AUTO_CONTINUE": "true" if args.auto_continue else "false"})

    try:
        config = load_config(bart_dir)
    except ConfigError as e:
        print(f"ERROR: {bart_dir / PROJECT_ENV_FILE}: {e}")
        return 2

    print(f"Config: {bart_dir / PROJECT_ENV_FILE}")
    print(f"  agent:          {config.agent or 'auto'}")
    print(f"  auto_continue:  {str(config.auto_continue).lower()}")
    print(f"  notifications:  {str(config.notifications).lower()}")
    print(f"  poll:           every {config.poll_interval}s, up to {config.poll_timeout}s")
    print(f"  max_iterations: {config.max_iterations}")
    print(f"  rate_limit:     exit code {config.rate_limit_exit_code or 'off'}, wait {config.rate_limit_wait}s")
    print("Agents:")
    for name in sorted(agents.agents):
        found = "" if check_binary_available(get_agent_binary(agents, name)) else "  (not installed)"
        print(f"  {name}: {agents.agents[name]}{found}")
    return 0
