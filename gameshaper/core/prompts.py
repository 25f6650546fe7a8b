"""Prompt Template and Model Task Loader

Loads prompt templates from config/prompts.yaml and per-call-type model
options from config/model_tasks.yaml. Both files are read once and cached.

Usage:
    from gameshaper.core.prompts import format_prompt, get_prompt, get_task_options

    text = format_prompt(get_prompt("node_edition"), {"user_prompt": "..."})
"""

import logging
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# Configuration file paths (shipped as package data)
CONFIG_DIR = Path(__file__).parent.parent / "config"
PROMPTS_PATH = CONFIG_DIR / "prompts.yaml"
MODEL_TASKS_PATH = CONFIG_DIR / "model_tasks.yaml"

# Options forwarded to the completion capability when present in model_tasks.yaml
LLM_OPTION_KEYS = (
    "temperature",
    "max_tokens",
    "top_p",
    "frequency_penalty",
    "presence_penalty",
)

_PLACEHOLDER = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")

# Cached configuration
_prompts: dict[str, str] | None = None
_model_tasks: dict[str, dict[str, Any]] | None = None


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found at %s, using empty defaults", path)
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data or {}


def load_prompts() -> dict[str, str]:
    """Load the prompt templates from YAML.

    Returns:
        Mapping of prompt name to template text.

    Raises:
        yaml.YAMLError: If the file is invalid.
    """
    global _prompts

    if _prompts is not None:
        return _prompts

    data = _read_yaml(PROMPTS_PATH)
    _prompts = {str(name): str(text) for name, text in data.get("prompts", {}).items()}
    logger.info("Loaded %d prompt templates from %s", len(_prompts), PROMPTS_PATH)
    return _prompts


def load_model_tasks() -> dict[str, dict[str, Any]]:
    """Load per-call-type model overrides from YAML."""
    global _model_tasks

    if _model_tasks is not None:
        return _model_tasks

    data = _read_yaml(MODEL_TASKS_PATH)
    _model_tasks = {}
    for task in data.get("model_tasks", []) or []:
        call_type = task.get("call_type")
        if call_type:
            _model_tasks[call_type] = dict(task)
    logger.info("Loaded %d model task overrides from %s", len(_model_tasks), MODEL_TASKS_PATH)
    return _model_tasks


def reload_config() -> None:
    """Force a reload of both YAML files on next access."""
    global _prompts, _model_tasks
    _prompts = None
    _model_tasks = None


def get_prompt(name: str) -> str:
    """Get a prompt template by name.

    Raises:
        KeyError: If no template with that name exists.
    """
    prompts = load_prompts()
    if name not in prompts:
        raise KeyError(f"Unknown prompt template: {name}")
    return prompts[name]


def get_model_override(call_type: str) -> str | None:
    """Get the model configured for a call type, if any."""
    return load_model_tasks().get(call_type, {}).get("model")


def get_task_options(call_type: str) -> dict[str, Any]:
    """Get completion options (temperature, max_tokens, ...) for a call type.

    Args:
        call_type: Ledger call type, e.g. "node_creation_planning".

    Returns:
        Options dict containing only the keys configured for the call type.
    """
    task = load_model_tasks().get(call_type, {})
    return {key: task[key] for key in LLM_OPTION_KEYS if task.get(key) is not None}


def format_prompt(template: str, values: dict[str, Any]) -> str:
    """Substitute ``{name}`` placeholders in a template.

    Only identifiers present in ``values`` are replaced, so JSON examples
    embedded in templates (``{"rpl": ...}``) pass through untouched.
    Non-string values are inserted with ``str()``.
    """

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        value = values[key]
        return value if isinstance(value, str) else str(value)

    return _PLACEHOLDER.sub(_replace, template)
