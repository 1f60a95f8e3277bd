"""
Prompt loader for bart.

Loads prompt templates from the package prompts/ directory and interpolates
variables. Templates use Python str.format() syntax: {variable_name}
Use {{ and }} for literal braces.

HTML comments (<!-- ... -->) are stripped before rendering - use them for
documentation that shouldn't be sent to the agent.

A project may override a template by placing a file in .bart/; see
render_task_prompt.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

from bartloop.lib.constants import PROMPT_TEMPLATE_FILE
from bartloop.lib.tasks import Task

logger = logging.getLogger(__name__)

__all__ = ["PromptError", "load_prompt", "render_prompt", "render_task_prompt",
           "specialist_section", "clear_cache", "PROMPTS_DIR"]

# Pattern to strip HTML comments (including multiline)
_HTML_COMMENT_PATTERN = re.compile(r'<!--.*?-->\s*', re.DOTALL)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"


class PromptError(Exception):
    """Raised when prompt loading or rendering fails."""
    pass


def _read_template(path: Path) -> str:
    content = path.read_text()
    content = _HTML_COMMENT_PATTERN.sub('', content)
    return content.lstrip()


@lru_cache(maxsize=32)
def load_prompt(name: str) -> str:
    """
    Load a packaged prompt template by name (cached).

    Raises:
        PromptError: If prompt file doesn't exist
    """
    prompt_path = PROMPTS_DIR / f"{name}.md"

    if not prompt_path.exists():
        raise PromptError(
            f"Prompt template '{name}' not found. "
            f"Expected file: {prompt_path}"
        )

    logger.debug(f"Loading prompt template: {name}")
    return _read_template(prompt_path)


def _format(template: str, name: str, kwargs: dict) -> str:
    try:
        return template.format(**kwargs)
    except KeyError as e:
        raise PromptError(
            f"Missing required variable {e} in prompt '{name}'. "
            f"Provided: {list(kwargs.keys())}"
        ) from e
    except (IndexError, ValueError) as e:
        raise PromptError(f"Malformed prompt template '{name}': {e}") from e


def render_prompt(name: str, **kwargs) -> str:
    """
    Load and render a packaged prompt template with variables.

    Raises:
        PromptError: If template not found or required variable missing
    """
    return _format(load_prompt(name), name, kwargs)


def specialist_section(name: str, type_: str, description: str) -> str:
    """Specialist block appended after the file hints."""
    return f"\nSpecialist: {name} ({type_})\nSpecialist context: {description}\n"


def render_task_prompt(task: Task, specialist: str = "", bart_dir: Optional[Path] = None) -> str:
    """Render the prompt for one task.

    Uses .bart/bart-prompt-template.md when the project provides one.
    """
    variables = dict(
        task_id=task.id,
        title=task.title,
        description=task.description,
        files=", ".join(task.files),
        specialist=specialist,
    )
    if bart_dir is not None:
        override = bart_dir / PROMPT_TEMPLATE_FILE
        if override.exists():
            logger.debug(f"Using project prompt template {override}")
            return _format(_read_template(override), str(override), variables)
    return render_prompt("task", **variables)


def clear_cache():
    """Clear the prompt cache (useful for testing or hot-reload)."""
    load_prompt.cache_clear()
