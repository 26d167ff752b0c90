"""
Shared validators for input sanitization.
"""

import html
import re

# Tags and control characters never reach a messaging channel
_TAG_RE = re.compile(r"<[^>]+>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def validate_quantity(quantity: int, min_val: int = 1, max_val: int = 99) -> int:
    """
    Validate quantity is within acceptable range.

    Raises:
        ValueError: If quantity is outside allowed range
    """
    if quantity < min_val:
        raise ValueError(f"Minimum quantity is {min_val}")
    if quantity > max_val:
        raise ValueError(f"Maximum quantity is {max_val}")
    return quantity


def sanitize_free_text(text: str | None, max_length: int) -> str | None:
    """Strip control characters and surrounding whitespace, then truncate."""
    if text is None:
        return None
    text = _CONTROL_RE.sub("", text).strip()
    if not text:
        return None
    return text[:max_length]


def sanitize_reply(text: str | None, max_length: int = 4096) -> str:
    """
    Make a reasoning-engine reply safe to send to a messaging channel.

    Removes HTML tags, unescapes entities, drops control characters,
    collapses runs of blank lines and caps the length.
    """
    if not text:
        return ""

    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    text = _CONTROL_RE.sub("", text)
    text = _BLANK_LINES_RE.sub("\n\n", text).strip()

    if len(text) > max_length:
        text = text[: max_length - 3].rstrip() + "..."
    return text
