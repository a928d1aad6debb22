"""Jinja2 rendering for generated source files.

Generated views are themselves Jinja templates, so the generator templates
use a distinct delimiter set: ``<% %>`` for blocks, ``<< >>`` for
expressions and ``<# #>`` for comments. ``{{ }}`` and ``{% %}`` pass through
untouched.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined

_DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"


class TemplateRenderer:
    """Render ``.j2`` templates from the package template directory."""

    def __init__(self, template_dir: Optional[Union[str, Path]] = None) -> None:
        if template_dir is None:
            template_dir = _DEFAULT_TEMPLATE_DIR
        self.template_dir = Path(template_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=False,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
            block_start_string="<%",
            block_end_string="%>",
            variable_start_string="<<",
            variable_end_string=">>",
            comment_start_string="<#",
            comment_end_string="#>",
        )
        self.env.filters["pascal_case"] = pascal_case
        self.env.filters["title_words"] = title_words
        self.env.filters["pyrepr"] = repr

    def render(self, template_path: str, context: Dict[str, Any]) -> str:
        """Render ``template_path`` (relative to the template directory)."""
        template = self.env.get_template(template_path)
        return template.render(**context)

    def render_string(self, template_string: str, context: Dict[str, Any]) -> str:
        template = self.env.from_string(template_string)
        return template.render(**context)


def pascal_case(value: str) -> str:
    """``blog_post`` -> ``BlogPost``."""
    parts = re.split(r"[-_\s]+", value)
    return "".join(word[:1].upper() + word[1:] for word in parts if word)


def title_words(value: str) -> str:
    """``created_at`` -> ``Created At``."""
    return " ".join(word.capitalize() for word in re.split(r"[-_\s]+", value) if word)
