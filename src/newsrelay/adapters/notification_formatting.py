"""Shared item formatting helpers.

Keeping formatting here prevents drift between delivery channels and keeps
posts consistent regardless of how they are sent.
"""

from __future__ import annotations

import html

from newsrelay.core.models import CandidateItem

TITLE_LIMIT = 256
DEFAULT_SNIPPET_CHARS = 400


def clip(text: str, limit: int) -> str:
    """Clip to ``limit`` characters, marking the cut with an ellipsis."""

    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)].rstrip() + "..."


def format_source_label(item: CandidateItem) -> str:
    return item.source_name or "RSS Feed"


def _format_markdown(item: CandidateItem, snippet_chars: int) -> str:
    """Create the Markdown body used by the Telethon channel."""

    def escape_md(value: str) -> str:
        for ch in r"*[`":
            value = value.replace(ch, f"\\{ch}")
        return value

    title = escape_md(clip(item.title, TITLE_LIMIT))
    excerpt = escape_md(clip(item.body, snippet_chars))
    source = escape_md(format_source_label(item))
    timestamp = item.published_at.astimezone().strftime("%H:%M %d-%m-%Y")

    lines = [f"**{title}**"]
    if item.category:
        lines.append(f"__{escape_md(item.category)}__")
    if excerpt:
        lines.extend(["", excerpt])
    lines.extend(["", item.link, "", f"{source} · {timestamp}"])
    return "\n".join(lines)


def _format_html(item: CandidateItem, snippet_chars: int) -> str:
    """Create the HTML body used by the Bot API channel."""

    title = html.escape(clip(item.title, TITLE_LIMIT))
    excerpt = html.escape(clip(item.body, snippet_chars))
    source = html.escape(format_source_label(item))
    link = html.escape(item.link, quote=True)
    timestamp = html.escape(item.published_at.astimezone().strftime("%H:%M %d-%m-%Y"))

    parts = [f'<b><a href="{link}">{title}</a></b>']
    if item.category:
        parts.append(f"<i>{html.escape(item.category)}</i>")
    if excerpt:
        parts.extend(["", excerpt])
    parts.extend(["", f"{source} · {timestamp}"])
    return "\n".join(parts)


def format_item(item: CandidateItem, mode: str, snippet_chars: int = DEFAULT_SNIPPET_CHARS) -> str:
    """Return the item formatted for the requested mode."""

    if mode == "markdown":
        return _format_markdown(item, snippet_chars)
    if mode == "html":
        return _format_html(item, snippet_chars)
    raise ValueError(f"Unsupported notification format: {mode}")
