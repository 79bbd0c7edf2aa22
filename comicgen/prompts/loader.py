"""
Versioned prompt templates.

Prompts live in YAML files grouped by domain:

    v1/
    ├── shared/         # JSON-only system prompt, child-safety constraints
    ├── conversation/   # Requirements-gathering agent
    ├── comic/          # Script writer, image prompt writer, art style
    └── utility/        # JSON repair

A YAML entry is either a template string or a mapping with ``template``,
``required_variables`` and ``output_schema``. Anything else is plain data
(see ``get_prompt_data``).

Usage:
    from comicgen.prompts.loader import render_prompt

    rendered = render_prompt("prompt_script_writer", lesson="sharing", child_age=6, ...)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, StrictUndefined, TemplateSyntaxError

logger = logging.getLogger(__name__)

PROMPTS_ROOT = Path(__file__).resolve().parent
PROMPT_VERSION = "v1"
DOMAINS = ("shared", "conversation", "comic", "utility")
SHARED_CONTEXT_KEYS = ("system_prompt_json", "global_constraints")

_EXPRESSION_VAR = re.compile(r"\{\{\s*([a-zA-Z_]\w*)")
_CONDITION_VAR = re.compile(r"\{%\s*(?:if|elif)\s+(?:not\s+)?([a-zA-Z_]\w*)")
_LOOP = re.compile(r"\{%\s*for\s+([\w, ]+?)\s+in\s+([a-zA-Z_]\w*)")


@lru_cache(maxsize=1)
def _jinja_env() -> Environment:
    return Environment(undefined=StrictUndefined, autoescape=False, trim_blocks=True, lstrip_blocks=True)


def _prompt_files(domain: str | None = None) -> Iterator[tuple[str, Path]]:
    for name in (domain,) if domain else DOMAINS:
        folder = PROMPTS_ROOT / PROMPT_VERSION / name
        if folder.is_dir():
            for path in sorted(folder.glob("*.yaml")):
                yield name, path


def _read_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return data if isinstance(data, dict) else {}


def _template_of(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("template")
    return value if isinstance(value, str) else None


def _syntax_error(template: str) -> str | None:
    try:
        _jinja_env().parse(template)
    except TemplateSyntaxError as exc:
        return f"line {exc.lineno}: {exc.message}"
    return None


@lru_cache(maxsize=1)
def _load_versioned_prompts() -> dict[str, Any]:
    """All entries of every domain file. A template with bad Jinja syntax fails the load."""
    prompts: dict[str, Any] = {}
    for _, path in _prompt_files():
        try:
            data = _read_yaml(path)
        except yaml.YAMLError as exc:
            logger.warning("prompt_file_unreadable path=%s error=%s", path, exc)
            continue
        for key, value in data.items():
            template = _template_of(value)
            error = _syntax_error(template) if template is not None else None
            if error:
                raise ValueError(f"Invalid Jinja2 template in {path.name}:{key}: {error}")
        prompts.update(data)
    return prompts


def get_prompt(name: str) -> str:
    """Template text for ``name``; KeyError when missing or not a template."""
    template = _template_of(_load_versioned_prompts().get(name))
    if template is None:
        raise KeyError(f"Prompt '{name}' not found or not a string")
    return template


def get_prompt_data(name: str) -> Any:
    prompts = _load_versioned_prompts()
    if name not in prompts:
        raise KeyError(f"Prompt data '{name}' not found")
    return prompts[name]


def render_prompt(name: str, validate: bool = True, **context: Any) -> str:
    """
    Render a prompt template with the given context.

    ``system_prompt_json`` and ``global_constraints`` are filled in unless
    the caller passes them.

    Raises:
        ValueError: If validate=True and required variables are missing
    """
    prompts = _load_versioned_prompts()
    for key in SHARED_CONTEXT_KEYS:
        if key in prompts:
            context.setdefault(key, prompts[key])

    if validate:
        missing = check_required_variables(name, context)
        if missing:
            raise ValueError(f"Missing required variables for '{name}': {missing}")

    return _jinja_env().from_string(get_prompt(name)).render(**context).strip()


def list_prompts(domain: str | None = None) -> list[str]:
    if domain is None:
        return list(_load_versioned_prompts())
    return [key for _, path in _prompt_files(domain) for key in _read_yaml(path)]


def get_prompt_metadata(name: str) -> dict[str, Any]:
    """Domain, file, template variables, declared required variables and output schema of ``name``."""
    for domain, path in _prompt_files():
        entry = _read_yaml(path).get(name)
        if entry is None:
            continue
        declared = entry if isinstance(entry, dict) else {}
        return {
            "domain": domain,
            "version": PROMPT_VERSION,
            "file_path": str(path.relative_to(PROMPTS_ROOT)),
            "variables": sorted(extract_template_variables(_template_of(entry) or "")),
            "required_variables": declared.get("required_variables") or [],
            "output_schema": declared.get("output_schema"),
        }
    raise KeyError(f"Prompt '{name}' not found")


def extract_template_variables(template: str) -> set[str]:
    """Top-level names read by ``{{ }}`` expressions and ``{% if/for %}`` tags."""
    names = set(_EXPRESSION_VAR.findall(template)) | set(_CONDITION_VAR.findall(template))
    for targets, iterable in _LOOP.findall(template):
        names.add(iterable)
        # Loop targets are bound by the template itself.
        names.difference_update(t.strip() for t in targets.split(","))
    return names


def check_required_variables(name: str, context: dict[str, Any]) -> list[str]:
    try:
        meta = get_prompt_metadata(name)
    except KeyError:
        return []

    if meta["required_variables"]:
        return [v for v in meta["required_variables"] if v not in context]
    wanted = extract_template_variables(get_prompt(name)) - set(SHARED_CONTEXT_KEYS)
    return sorted(wanted - context.keys())


def validate_all_prompts() -> dict[str, list[str]]:
    """Each template name mapped to its Jinja2 syntax errors."""
    results: dict[str, list[str]] = {}
    for name, value in _load_versioned_prompts().items():
        template = _template_of(value)
        error = _syntax_error(template) if template else None
        results[name] = [f"Jinja2 syntax error: {error}"] if error else []
    return results


def clear_cache() -> None:
    _load_versioned_prompts.cache_clear()
    _jinja_env.cache_clear()
