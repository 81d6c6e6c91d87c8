"""Token estimation for quota accounting.

These are estimates, not a tokenizer: good enough to meter a monthly budget,
not to reconcile a bill.
"""

import math
from typing import Optional

from ...config import MONTHLY_TOKEN_LIMIT

CHARS_PER_TOKEN = 4
TOKENS_PER_WORD = 1.3


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate the token count of `text`.

    Averages a character-based estimate (~4 chars/token) with a word-based
    one (~1.3 tokens/word).
    """
    if not text:
        return 0

    char_estimate = math.ceil(len(text) / CHARS_PER_TOKEN)
    word_estimate = math.ceil(len(text.split()) * TOKENS_PER_WORD)

    return math.ceil((char_estimate + word_estimate) / 2)


def format_token_count(tokens: int) -> str:
    """Format a token count for display ("950", "12.3k")."""
    if tokens < 1000:
        return str(tokens)
    return f"{tokens / 1000:.1f}k"


def usage_percentage(used_tokens: int, limit: int = MONTHLY_TOKEN_LIMIT) -> float:
    """Share of the monthly limit used, rounded to one decimal and capped at 100."""
    if limit <= 0:
        return 100.0
    return round(min(used_tokens / limit * 100, 100.0), 1)


def remaining_tokens(used_tokens: int, limit: int = MONTHLY_TOKEN_LIMIT) -> int:
    return max(limit - used_tokens, 0)
