"""Prompt token counting and completion budget."""

from __future__ import annotations

from collections.abc import Sequence
from functools import lru_cache

import tiktoken

# Per-message framing overhead of the chat format (role markers, separators).
TOKENS_PER_MESSAGE = 3
TOKENS_REPLY_PRIMING = 3


@lru_cache(maxsize=8)
def _load_encoding(name: str) -> tiktoken.Encoding:
    try:
        return tiktoken.get_encoding(name)
    except Exception as exc:  # pragma: no cover - offline handling
        raise RuntimeError(
            f"Failed to load tiktoken encoding '{name}'. "
            "Allow network access or pre-cache the encoding files.",
        ) from exc


class MessageTokenCounter:
    """Counts tokens a chat message list occupies in the model context."""

    def __init__(self, *, encoding_name: str = "cl100k_base") -> None:
        self.encoding_name = encoding_name

    def __call__(self, messages: Sequence[dict[str, str]]) -> int:
        encoding = _load_encoding(self.encoding_name)
        total = TOKENS_REPLY_PRIMING
        for message in messages:
            total += TOKENS_PER_MESSAGE
            for value in message.values():
                total += len(encoding.encode_ordinary(value))
        return total


def compute_completion_budget(
    *,
    token_limit: int,
    prompt_tokens: int,
    min_completion_tokens: int = 1,
) -> int:
    """Tokens left for the answer; floored so the request stays valid."""

    return max(token_limit - prompt_tokens, min_completion_tokens)
