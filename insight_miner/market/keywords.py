"""Title tokenization shared by market analysis and marketplace learning."""

import re
from collections import Counter
from typing import Iterable

STOP_WORDS = frozenset(
    {"the", "a", "an", "and", "or", "for", "with", "shirt", "tshirt", "t-shirt", "tee"}
)

_NON_LETTERS = re.compile(r"[^a-z]")


def title_keywords(title: str) -> list[str]:
    """Lower-cased letter-only tokens longer than two characters, stop words removed."""
    keywords = []
    for word in (title or "").lower().split():
        cleaned = _NON_LETTERS.sub("", word)
        if len(cleaned) > 2 and cleaned not in STOP_WORDS:
            keywords.append(cleaned)
    return keywords


def most_common(items: Iterable, limit: int, min_count: int = 1) -> list:
    """Most frequent items; ties keep first-seen order."""
    counts = Counter(items)
    return [item for item, count in counts.most_common() if count >= min_count][:limit]
