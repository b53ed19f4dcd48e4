"""Security classifier — keyword match on issue and comment text."""

from watchman.engines.classifier.keywords import (
    DEFAULT_KEYWORDS,
    contains_security_signal,
    find_security_signals,
)

__all__ = ["DEFAULT_KEYWORDS", "contains_security_signal", "find_security_signals"]
