#!/usr/bin/env python3
"""Bart Loop CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path
from typing import Optional

from bartloop.lib.tasks import TaskStoreError, find_project_root, resolve_tasks_path
from bartloop.commands import run as cmd_run_module
from bartloop.commands import status as cmd_status_module
from bartloop.commands import plans as cmd_plans_module
from bartloop.commands import reset as cmd_reset_module
from bartloop.commands import requirements as cmd_requirements_module
from bartloop.commands import specialists as cmd_specialists_module
from bartloop.commands import stop as cmd_stop_module
from bartloop.commands import config as cmd_config_module


def get_project_root() -> Path:
    """Nearest directory holding .bart, or the current directory."""
    return find_project_root(Path.cwd())


def get_tasks_path(args, project_root: Path) -> Path:
    """Resolve the tasks file from --tasks/--plan or the newest plan."""
    try:
        return resolve_tasks_path(project_root, tasks=args.tasks, plan=args.plan)
    except TaskStoreError as e:
        print(f"ERROR: {e}")
        sys.exit(2)


def _optional_tasks_path(args, project_root: Path) -> Optional[Path]:
    try:
        return resolve_tasks_path(project_root, tasks=args.tasks, plan=args.plan)
    except TaskStoreError:
        return None


def cmd_run(args):
    project_root = get_project_root()
    return cmd_run_module.cmd_run(args, project_root, get_tasks_path(args, project_root))


def cmd_status(args):
    project_root = get_project_root()
    return cmd_status_module.cmd_status(args, project_root, get_tasks_path(args, project_root))


def cmd_plans(args):
    project_root = get_project_root()
    return cmd_plans_module.cmd_plans(args, project_root, _optional_tasks_path(args, project_root))


def cmd_reset(args):
    project_root = get_project_root()
    return cmd_reset_module.cmd_reset(args, project_root, get_tasks_path(args, project_root))


def cmd_requirements(args):
    project_root = get_project_root()
    return cmd_requirements_module.cmd_requirements(args, project_root, get_tasks_path(args, project_root))


def cmd_specialists(args):
    project_root = get_project_root()
    tasks_path = _optional_tasks_path(args, project_root) if args.suggest else None
    return cmd_specialists_module.cmd_specialists(args, project_root, tasks_path)


def cmd_stop(args):
    return cmd_stop_module.cmd_stop(args, get_project_root())


def cmd_config(args):
    return cmd_config_module.cmd_config(args, get_project_root())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='bart', description='Bart Loop task orchestrator')
    parser.add_argument('--tasks', '-t', help='Path to a tasks.json file')
    parser.add_argument('--plan', '-p', help='Plan slug under .bart/plans/')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # bart run
    p_run = subparsers.add_parser('run', help='Run the next task, or a specific one')
    p_run.add_argument('task', nargs='?', help='Task ID (runs all eligible tasks if omitted)')
    p_run.add_argument('--workstream', '-w', help='Only run tasks in this workstream')
    p_run.add_argument('--dry-run', action='store_true', help='Show what would run without running it')
    p_run.add_argument('--agent', '-a', help='Agent to use (default: configured or auto-detected)')
    p_run.add_argument('--no-auto-continue', action='store_true', help='Ask before each next task')
    p_run.set_defaults(func=cmd_run)

    # bart status
    p_status = subparsers.add_parser('status', help='Show progress')
    p_status.add_argument('--workstream', '-w', help='Only show this workstream')
    p_status.set_defaults(func=cmd_status)

    # bart plans
    p_plans = subparsers.add_parser('plans', help='List plans')
    p_plans.set_defaults(func=cmd_plans)

    # bart reset
    p_reset = subparsers.add_parser('reset', help='Reset a task to pending')
    p_reset.add_argument('task', nargs='?', help='Task ID')
    p_reset.add_argument('--errors', action='store_true', help='Reset every errored task')
    p_reset.add_argument('--workstream', '-w', help='With --errors, only this workstream')
    p_reset.set_defaults(func=cmd_reset)

    # bart requirements
    p_reqs = subparsers.add_parser('requirements', help='Requirement coverage')
    p_reqs.add_argument('--gaps', action='store_true', help='Only requirements not yet complete')
    p_reqs.set_defaults(func=cmd_requirements)

    # bart specialists
    p_spec = subparsers.add_parser('specialists', help='List specialists')
    p_spec.add_argument('--history', action='store_true', help='Show per-specialist track record')
    p_spec.add_argument('--suggest', metavar='TASK', help='Rank specialists for a task')
    p_spec.set_defaults(func=cmd_specialists)

    # bart stop
    p_stop = subparsers.add_parser('stop', help='Stop running loops after their current task')
    p_stop.set_defaults(func=cmd_stop)

    # bart config
    p_config = subparsers.add_parser('config', help='Show or change project settings')
    p_config.add_argument('--agent', help='Set the default agent')
    auto = p_config.add_mutually_exclusive_group()
    auto.add_argument('--auto-continue', dest='auto_continue', action='store_true', default=None,
                      help='Keep running without asking between tasks')
    auto.add_argument('--no-auto-continue', dest='auto_continue', action='store_false',
                      help='Ask before each next task')
    p_config.set_defaults(func=cmd_config)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
