"""Discord-specific formatting helpers."""

from __future__ import annotations

# Discord rejects embed field values longer than this.
EMBED_FIELD_MAX_LENGTH = 1024


def truncate(content: str, max_length: int = EMBED_FIELD_MAX_LENGTH) -> str:
    """Clip ``content`` to ``max_length`` characters, marking the cut with an ellipsis.

    Examples:
        >>> truncate("short")
        'short'
        >>> len(truncate("a" * 2000))
        1024
    """
    if len(content) <= max_length:
        return content
    return content[: max_length - 1].rstrip() + "…"


def render_welcome(template: str, user: str, member_count: int) -> str:
    """Fill the ``{user}`` and ``{memberCount}`` placeholders of a welcome message."""

    return template.replace("{user}", user).replace("{memberCount}", str(member_count))


def format_uptime(total_seconds: float) -> str:
    """Render an uptime such as ``1d 2h 5m 9s``; zero-valued leading units are omitted."""

    seconds = int(total_seconds)
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    parts = [f"{days}d" if days else "", f"{hours}h" if hours else "", f"{minutes}m" if minutes else ""]
    parts.append(f"{seconds}s")
    return " ".join(part for part in parts if part)
