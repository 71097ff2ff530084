"""Prompt template loading.

Prompts live as Markdown files next to this module (``intent-analysis.md``,
``architecture-design.md``, ...) and are rendered with Jinja2 so they can use
``{{ placeholder }}`` substitution and simple ``{% if %}`` blocks.  Compiled
templates are cached by the Jinja environment; rendered text is not kept.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from ..errors import ConfigurationError

_DEFAULT_PROMPTS_DIR = Path(__file__).parent


def _to_json(value: Any) -> str:
    """Jinja filter: pretty-print a value (or pydantic model) as JSON."""
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json", by_alias=True)
    return json.dumps(value, indent=2, ensure_ascii=False)


class PromptLoader:
    """Loads and renders prompt templates from a directory of ``.md`` files."""

    def __init__(self, prompts_dir: str | Path | None = None) -> None:
        self.prompts_dir = Path(prompts_dir) if prompts_dir else _DEFAULT_PROMPTS_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(self.prompts_dir)),
            autoescape=select_autoescape([]),
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["tojson_pretty"] = _to_json

    def load(self, name: str, variables: dict[str, Any] | None = None) -> str:
        """Render prompt *name* (without the ``.md`` suffix) with *variables*.

        Raises:
            ConfigurationError: If no prompt with that name exists.
        """
        try:
            template = self.env.get_template(f"{name}.md")
        except TemplateNotFound as exc:
            raise ConfigurationError(
                f"Prompt '{name}' not found in {self.prompts_dir}", code="prompt_not_found"
            ) from exc

        return template.render(**(variables or {}))

    def clear_cache(self) -> None:
        """Drop compiled templates so prompt files are re-read."""
        if self.env.cache is not None:
            self.env.cache.clear()
