"""Utility helpers for Ralph Loop."""

from .text import preview, truncate_text
from .tokens import estimate_tokens_text

__all__ = [
    "preview",
    "truncate_text",
    "estimate_tokens_text",
]
