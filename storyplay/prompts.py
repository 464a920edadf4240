"""Handlebars rendering for story prompts, hint phrasings and scripted beats."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

import pybars

from storyplay.models import Character, HistoryTurn

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_join(this, items, separator=", "):
    """{{join array ", "}}: join plain strings."""
    return separator.join(str(item) for item in items)


_HELPERS: dict[str, Callable] = {
    "join": _helper_join,
}


def compile_template(template_str: str) -> Callable:
    """Compile a Handlebars template, cached by source string."""
    compiled = _cache.get(template_str)
    if compiled is None:
        try:
            compiled = _compiler.compile(template_str)
        except Exception as e:
            raise PromptError(f"Template error: {e}") from e
        _cache[template_str] = compiled
    return compiled


def check_templates(templates: Iterable[tuple[str, str]]) -> None:
    """Compile every (where, template) pair; PromptError names the first bad one."""
    for where, template_str in templates:
        if "{{" not in template_str:
            continue
        try:
            compile_template(template_str)
        except PromptError as e:
            raise PromptError(f"{where}: {e}") from e.__cause__


def render(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context."""
    if "{{" not in template_str:
        return template_str
    compiled = compile_template(template_str)
    try:
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def build_context(
    story: Any,
    player_name: str,
    characters: list[Character],
    **extra: Any,
) -> dict[str, Any]:
    """Assemble template variables shared by every story template."""
    ctx: dict[str, Any] = {
        "title": story.title,
        "author": story.author,
        "description": story.description,
        "setting": dict(story.setting),
        "player_name": player_name,
        "characters": [c.model_dump() for c in characters],
    }
    ctx.update(extra)
    return ctx


def history_window(history: list[HistoryTurn], size: int) -> list[HistoryTurn]:
    """Return the last `size` turns of the rolling history."""
    if size <= 0:
        return []
    return list(history[-size:])
