from __future__ import annotations


def truncate_text(text: str, max_chars: int) -> str:
    if max_chars <= 0:
        return text
    if len(text) <= max_chars:
        return text
    remaining = len(text) - max_chars
    return f"{text[:max_chars]}… (+{remaining} chars)"


def preview(text: str, max_chars: int = 100) -> str:
    """Single-line preview of a prompt for headers and tables."""
    flat = " ".join(text.split())
    if len(flat) <= max_chars:
        return flat
    return flat[:max_chars] + "..."
