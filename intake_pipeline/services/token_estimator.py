"""
Token Estimator.

Approximates token counts from character counts using a fixed
tokens-per-character ratio (default 0.25, i.e. ~4 characters per token).
This is a heuristic, not a tokenizer: counts can be off by a wide margin
for non-English text or code. Anything that needs exact counts can pass
its own object with the same two methods to the chunker.
"""

from __future__ import annotations

import math
from typing import Optional, Protocol

from intake_pipeline.config import get_settings


class TokenCounter(Protocol):
    def estimate_tokens(self, text: str) -> int: ...

    def estimate_chars_for_tokens(self, token_count: int) -> int: ...


class TokenEstimator:
    """Character-ratio token estimator."""

    def __init__(self, tokens_per_char: Optional[float] = None) -> None:
        if tokens_per_char is None:
            tokens_per_char = get_settings().tokens_per_char
        if tokens_per_char <= 0:
            raise ValueError("tokens_per_char must be positive")
        self.tokens_per_char = tokens_per_char

    def estimate_tokens(self, text: str) -> int:
        return math.ceil(len(text) * self.tokens_per_char)

    def estimate_chars_for_tokens(self, token_count: int) -> int:
        return math.floor(token_count / self.tokens_per_char)


def estimate_tokens(text: str) -> int:
    """Estimate tokens in ``text`` with the configured ratio (rounded up)."""
    return TokenEstimator().estimate_tokens(text)


def estimate_chars_for_tokens(token_count: int) -> int:
    """Estimate how many characters hold ``token_count`` tokens (rounded down)."""
    return TokenEstimator().estimate_chars_for_tokens(token_count)
