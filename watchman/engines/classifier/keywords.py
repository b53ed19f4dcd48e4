"""Rule-based security classifier — whole-word keyword match, no NLP."""

from __future__ import annotations

import re
from collections.abc import Iterable

from watchman.core.config import DEFAULT_SECURITY_KEYWORDS

DEFAULT_KEYWORDS: frozenset[str] = frozenset(DEFAULT_SECURITY_KEYWORDS)

# Word tokens; punctuation and whitespace are separators, so "xss," and
# "exploit." still match but "transecurity" does not.
_WORD_RE = re.compile(r"\w+")


def find_security_signals(text: str, keywords: Iterable[str] = DEFAULT_KEYWORDS) -> list[str]:
    """Return the distinct keywords found in *text*, in order of first appearance."""
    wanted = _normalise(keywords)
    found: list[str] = []
    for match in _WORD_RE.finditer(text or ""):
        word = match.group(0).casefold()
        if word in wanted and word not in found:
            found.append(word)
    return found


def contains_security_signal(text: str, keywords: Iterable[str] = DEFAULT_KEYWORDS) -> bool:
    """True if *text* contains any of *keywords* as a whole word (case-insensitive)."""
    wanted = _normalise(keywords)
    return any(match.group(0).casefold() in wanted for match in _WORD_RE.finditer(text or ""))


def _normalise(keywords: Iterable[str]) -> frozenset[str]:
    if keywords is DEFAULT_KEYWORDS:
        return keywords
    return frozenset(k.casefold() for k in keywords)
