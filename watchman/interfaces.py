"""Abstract capabilities the pipeline stages are wired from.

Stages only ever talk to these contracts; concrete implementations
(GraphQL collector, SQL stores, in-process bus, alert sinks) are chosen
at wiring time in :mod:`watchman.wiring`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from watchman.engines.collector.models import Comment, Issue, WatchedRepository

Handler = Callable[[str], Awaitable[object]]


@dataclass(frozen=True)
class HandledCommentRecord:
    """Read-only view of a dedup record."""

    url: str
    content_hash: str
    handled_at: datetime


@dataclass(frozen=True)
class Alert:
    """A rendered, human-readable alert."""

    subject: str
    body: str


class Collector(ABC):
    """Remote source of issues and comments."""

    @abstractmethod
    async def list_issues(self, repository_url: str) -> list[Issue]:
        """Every issue of the repository, all pages accumulated."""

    @abstractmethod
    async def list_comments(self, owner: str, repo: str, issue_number: int) -> list[Comment]:
        """Every comment on one issue, all pages accumulated."""


class WatermarkStore(ABC):
    """Durable per-repository scan watermark."""

    @abstractmethod
    async def list_watched(self) -> list[WatchedRepository]: ...

    @abstractmethod
    async def get(self, repository_url: str) -> WatchedRepository | None: ...

    @abstractmethod
    async def advance(self, repository_url: str, new_timestamp: datetime) -> None:
        """Move the watermark forward; never backwards."""


class DedupStore(ABC):
    """Durable first-writer-wins record of handled comments."""

    @abstractmethod
    async def try_mark_handled(
        self, comment_url: str, content_hash: str, handled_at: datetime
    ) -> bool:
        """Insert-if-absent.  Returns ``already_handled``."""

    @abstractmethod
    async def get(self, comment_url: str) -> HandledCommentRecord | None: ...


class AlertSink(ABC):
    """Publish-only alert channel."""

    @abstractmethod
    async def send(self, alert: Alert) -> None: ...

    async def close(self) -> None:
        """Release any connection the sink holds."""


class MessageBus(ABC):
    """At-least-once, unordered topic bus carrying serialized messages."""

    @abstractmethod
    async def publish(self, topic: str, payload: str) -> None: ...

    @abstractmethod
    def subscribe(self, topic: str, handler: Handler) -> None: ...
