"""
Jinja2 template loader for every rendered alert body.

Task descriptions and SharePoint pages live in alert_relay/templates/ as
.jinja2 files — never hardcoded in Python. Templates ending in .html.jinja2
are autoescaped; markdown templates are not.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

# Resolve templates/ relative to this file: alert_relay/utils/templates.py → alert_relay/templates/
_TEMPLATES_DIR = Path(__file__).parent.parent / "templates"


def md_cell(value: Any) -> str:
    """Make *value* safe to place inside a markdown table cell."""
    text = str(value)
    return text.replace("|", "\\|").replace("\r\n", "<br>").replace("\n", "<br>")


def pretty_json(value: Any) -> str:
    """Pretty-print an opaque JSON fragment for a fenced block."""
    return json.dumps(value, indent=2, ensure_ascii=False, sort_keys=True, default=str)


_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATES_DIR)),
    undefined=StrictUndefined,   # raise immediately on undefined variables
    trim_blocks=True,            # strip newline after block tags
    lstrip_blocks=True,          # strip leading whitespace before block tags
    autoescape=select_autoescape(enabled_extensions=("html.jinja2",), default=False),
    keep_trailing_newline=True,
)
_env.filters["md_cell"] = md_cell
_env.filters["pretty_json"] = pretty_json


def render_template(name: str, **kwargs: object) -> str:
    """Render a Jinja2 template from the templates/ directory.

    Args:
        name: Template filename, e.g. "description_table.md.jinja2"
        **kwargs: Variables passed into the template.

    Returns:
        Rendered string.

    Raises:
        jinja2.TemplateNotFound: If the template file doesn't exist.
        jinja2.UndefinedError: If the template references a variable not in kwargs.
    """
    template = _env.get_template(name)
    return template.render(**kwargs)
