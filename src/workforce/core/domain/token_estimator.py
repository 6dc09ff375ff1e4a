"""
Token Estimator

Cheap heuristic token counts used for context budgeting and for usage
records when a provider does not report usage. Not an exact tokenizer:
CJK text costs more per character than Latin text, whitespace less.
"""

import math
from collections.abc import Iterable
from typing import Any

PER_MESSAGE_OVERHEAD = 4
PER_REQUEST_OVERHEAD = 3
SAFETY_FACTOR = 1.1


def _char_cost(code: int) -> float:
    if 0x4E00 <= code <= 0x9FFF:  # CJK unified ideographs
        return 1.5
    if 0x3000 <= code <= 0x303F:  # CJK punctuation
        return 1.0
    if 0x3040 <= code <= 0x30FF:  # hiragana/katakana
        return 1.5
    if 0xAC00 <= code <= 0xD7AF:  # hangul
        return 1.5
    if code <= 0x20:
        return 0.25
    return 0.4


def estimate_tokens(text: str | None) -> int:
    """Estimate the token count of ``text``."""
    if not text:
        return 0
    total = sum(_char_cost(ord(ch)) for ch in text)
    return math.ceil(total * SAFETY_FACTOR)


def estimate_message_cost(message: dict[str, Any]) -> int:
    """Cost of one chat message including its framing overhead."""
    return estimate_tokens(str(message.get("content") or "")) + PER_MESSAGE_OVERHEAD


def estimate_messages(messages: Iterable[dict[str, Any]]) -> int:
    """Estimate a full request (messages plus request overhead)."""
    return sum(estimate_message_cost(m) for m in messages) + PER_REQUEST_OVERHEAD
