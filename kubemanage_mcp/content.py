"""Helpers for the content blocks returned by tool calls."""
from typing import Any, Sequence

from mcp import types


def collect_text(content: Sequence[Any] | None) -> list[str]:
    """Returns the text of every non-empty text block."""
    if not content:
        return []
    return [block.text for block in content if isinstance(block, types.TextContent) and block.text]


def text_content(content: Sequence[Any] | None) -> str:
    """Joins all text blocks into one string, for error messages and logs."""
    return "\n".join(collect_text(content))
