"""Markdown to Matrix ``formatted_body`` rendering."""

from __future__ import annotations

from markdown_it import MarkdownIt

_renderer = MarkdownIt("commonmark")


def render_html(markdown: str) -> str:
    return _renderer.render(markdown).strip()


def prepare_markdown(markdown: str) -> tuple[str, str]:
    """Return ``(body, formatted_body)`` for a markdown message."""
    return markdown, render_html(markdown)
