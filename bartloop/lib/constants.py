"""Shared constants for bart."""

import re

# Project layout, relative to the project root
BART_DIR = ".bart"
PLANS_DIR = "plans"
TASKS_FILE = "tasks.json"
HISTORY_FILE = "history.jsonl"
MODEL_FILE = "specialist-model.json"
STOP_FILE = ".stop"
LOCKS_DIR = ".locks"
RUN_LOCK_FILE = "run.lock"
PROJECT_ENV_FILE = "project.env"
AGENTS_CONFIG_FILE = "agents.yaml"
PROMPT_TEMPLATE_FILE = "bart-prompt-template.md"

# Plan slug used for a tasks.json that does not live under plans/
LEGACY_PLAN_SLUG = "_legacy"

# Task status values
STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"
TASK_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_ERROR)

# History event kinds
EVENT_COMPLETED = "completed"
EVENT_ERROR = "error"
EVENT_RESET = "reset"

# Requirement coverage values
REQ_NONE = "none"
REQ_PARTIAL = "partial"
REQ_COMPLETE = "complete"

# Run loop
MAX_ITERATIONS = 100
POLL_INTERVAL_SECONDS = 5
POLL_TIMEOUT_SECONDS = 120
KILL_GRACE_SECONDS = 5

# An agent exiting with this code hit a provider rate limit; the task is
# retried after RATE_LIMIT_WAIT_SECONDS instead of being marked failed
RATE_LIMIT_EXIT_CODE = 175
RATE_LIMIT_WAIT_SECONDS = 3600

MILESTONES = (25, 50, 80, 100)

# Escalation: same task failing this many times, or this many distinct
# tasks currently errored in one workstream+plan
ESCALATION_THRESHOLD = 3

# Specialist matching
AUTO_MATCH_THRESHOLD = 0.8
MIN_SAMPLES = 5
TAG_PATTERN = re.compile(r'\[([^\]]+)\]')
