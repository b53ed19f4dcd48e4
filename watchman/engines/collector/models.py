"""Data models for the collector engine."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class WatchedRepository:
    """A repository under watch, detached from the database.

    ``last_scanned_at`` is the watermark; ``None`` means never scanned.
    """

    url: str
    used_by_urls: list[str] = field(default_factory=list)
    last_scanned_at: datetime | None = None


@dataclass(frozen=True)
class Issue:
    """A single issue as returned by the GraphQL API.

    Pure data structure, no DB dependencies.
    """

    owner: str
    repo: str
    number: int
    url: str
    body_text: str
    updated_at: datetime


@dataclass(frozen=True)
class Comment:
    """A comment on an issue."""

    owner: str
    repo: str
    issue_number: int
    url: str
    body_text: str
    updated_at: datetime

    @property
    def content_hash(self) -> str:
        """SHA-256 hex digest of the comment body."""
        return content_hash(self.body_text)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
