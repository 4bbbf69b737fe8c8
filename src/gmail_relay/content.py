# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Normalisation of request content into text and HTML renderings.

Request bodies arrive in several shapes: a plain string, an HTML string, a
flat record of form fields, or a template with substitution data. Each is
reduced to a :class:`NormalizedContent` carrying an optional plain-text
rendering and an optional HTML rendering.

Example:
    Rendering a record of form fields::

        content = normalize_content({"full_name": "Ada", "e-mail": "ada@example.com"})
        content.text  # "Full Name: Ada\\nE Mail: ada@example.com"
"""

from __future__ import annotations

import html
import json
import re
from dataclasses import dataclass
from typing import Any

HTML_TAG_PATTERN = re.compile(r"<[a-z][\s\S]*>", re.IGNORECASE)

TABLE_OPEN = '<table style="border-collapse: collapse; width: 100%; max-width: 600px; margin: 20px 0;">'
ROW_TEMPLATE = (
    '<tr style="border-bottom: 1px solid #e0e0e0;">'
    '<td style="padding: 12px; font-weight: bold; color: #333; width: 40%;">{key}:</td>'
    '<td style="padding: 12px; color: #666;">{value}</td>'
    "</tr>"
)


@dataclass(frozen=True)
class NormalizedContent:
    """Text and HTML renderings of a message body. Either may be absent."""

    text: str | None = None
    html: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.html

    def as_dict(self) -> dict[str, str]:
        out = {}
        if self.text is not None:
            out["text"] = self.text
        if self.html is not None:
            out["html"] = self.html
        return out


def format_field_name(name: str) -> str:
    """Turn ``full_name`` or ``customer-email`` into ``Full Name`` / ``Customer Email``."""
    spaced = re.sub(r"[-_]", " ", name)
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), spaced)


def stringify(value: Any) -> str:
    """Render a JSON value as display text; ``None`` renders empty."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def fields_to_html(data: dict[str, Any]) -> str:
    rows = [
        ROW_TEMPLATE.format(
            key=html.escape(format_field_name(str(key))),
            value=html.escape(stringify(value)),
        )
        for key, value in data.items()
    ]
    return TABLE_OPEN + "".join(rows) + "</table>"


def fields_to_text(data: dict[str, Any]) -> str:
    lines = [f"{format_field_name(str(key))}: {stringify(value)}" for key, value in data.items()]
    return "\n".join(lines).strip()


def looks_like_html(value: str) -> bool:
    return HTML_TAG_PATTERN.search(value) is not None


def normalize_content(content: Any) -> NormalizedContent:
    """Classify ``content`` and produce its text and/or HTML rendering.

    - strings containing an HTML tag become ``html``, other strings ``text``;
    - plain records become both a key/value table and ``Key: value`` lines;
    - anything else is stringified into ``text``.
    """
    if isinstance(content, str):
        if looks_like_html(content):
            return NormalizedContent(html=content)
        return NormalizedContent(text=content)

    if isinstance(content, dict):
        return NormalizedContent(text=fields_to_text(content), html=fields_to_html(content))

    return NormalizedContent(text=stringify(content))


def substitute(template: str, data: dict[str, Any]) -> str:
    """Replace every literal ``{{key}}`` with its value; unknown placeholders stay."""
    result = template
    for key, value in data.items():
        result = result.replace("{{" + str(key) + "}}", stringify(value))
    return result


def render_template(template: str | dict[str, Any], data: dict[str, Any]) -> NormalizedContent:
    """Apply ``data`` to a string template or an ``{html, text}`` template.

    A bare string template is treated as the HTML branch.
    """
    if isinstance(template, str):
        return NormalizedContent(html=substitute(template, data))

    html_branch = template.get("html")
    text_branch = template.get("text")
    return NormalizedContent(
        text=substitute(text_branch, data) if isinstance(text_branch, str) and text_branch else None,
        html=substitute(html_branch, data) if isinstance(html_branch, str) and html_branch else None,
    )
