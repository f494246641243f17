from __future__ import annotations

import tiktoken


def estimate_tokens_text(model: str | None, text: str) -> int:
    try:
        encoding = tiktoken.encoding_for_model(model or "")
    except Exception:
        encoding = tiktoken.get_encoding("cl100k_base")
    return len(encoding.encode(text))
