"""Text helpers for rendering shell source."""

from __future__ import annotations


def escape_quote(s: str) -> str:
    """Escape double quotes for use inside a double-quoted shell word."""
    return s.replace('"', '\\"')


def indent_n(s: str, n: int) -> str:
    """Prefix every non-blank line with ``n`` spaces, keeping line endings."""
    prefix = " " * n
    return "".join(line if line in ("\n", "\r\n", "\r") else prefix + line for line in s.splitlines(keepends=True))
