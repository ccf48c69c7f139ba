"""Jinja2 rendering of the files popforge itself adds to a project.

Loads ``.j2`` templates from ``popforge/scaffolder/templates/`` (project
markers, default network configurations) and renders them with a context
dictionary. Template trees fetched from users are never passed through Jinja2:
they are handled by :mod:`popforge.scaffolder.substitution`.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from popforge.utils import snake_case

_DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"


class TemplateRenderer:
    """Renders the bundled Jinja2 templates."""

    def __init__(self, template_dir: str | Path | None = None) -> None:
        if template_dir is None:
            template_dir = _DEFAULT_TEMPLATE_DIR
        self.template_dir = Path(template_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape([]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["snake_case"] = snake_case
        self.env.filters["toml_str"] = _toml_string_filter

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render a single template (path relative to the template directory)."""
        template = self.env.get_template(template_path)
        return template.render(**context)

    async def render_to_file(
        self,
        template_path: str,
        output_path: str | Path,
        context: dict[str, Any],
    ) -> Path:
        """Render a template and write the result to *output_path*.

        Parent directories are created automatically.
        """
        content = self.render(template_path, context)
        out = Path(output_path)
        await asyncio.to_thread(_write_file, out, content)
        return out

    def list_templates(self) -> list[str]:
        return sorted(str(p.relative_to(self.template_dir)) for p in self.template_dir.rglob("*.j2"))


_TOML_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


def _toml_string_filter(value: Any) -> str:
    """Quote a value as a TOML basic string.

    Quotes, backslashes and every control character are escaped.
    """

    def _escape(match: re.Match[str]) -> str:
        char = match.group(0)
        return _TOML_ESCAPES.get(char, f"\\u{ord(char):04X}")

    escaped = re.sub(r'["\\\x00-\x1f\x7f]', _escape, str(value))
    return f'"{escaped}"'


def _write_file(path: Path, content: str) -> None:
    """Synchronous helper: create parent dirs and write content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
