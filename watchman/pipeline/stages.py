"""Pipeline stages — Start → RepoScan → IssueScan → CommentScan.

Each stage is a stateless handler: it decodes one inbound payload, talks to
its injected collaborators, and publishes zero or more outbound messages.
Nothing survives between invocations, so the bus may run any number of
them concurrently and may redeliver any of them.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import structlog

from watchman.core.config import Settings
from watchman.engines.classifier import contains_security_signal, find_security_signals
from watchman.engines.collector.models import Comment, Issue, WatchedRepository, content_hash
from watchman.engines.notification.notifier import Notifier
from watchman.exceptions import StoreError
from watchman.interfaces import Collector, DedupStore, MessageBus, WatermarkStore
from watchman.pipeline.messages import (
    COMMENT_TOPIC,
    ISSUE_TOPIC,
    REPO_TOPIC,
    CommentScanMessage,
    IssueScanMessage,
    RepoScanMessage,
    decode,
)

log = structlog.get_logger("watchman.pipeline")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _qualifies(updated_at: datetime, cutoff: datetime | None) -> bool:
    """Updated at or after the cutoff; everything qualifies without one."""
    return cutoff is None or updated_at >= cutoff


def issue_body_key(issue_url: str, body_hash: str) -> str:
    """Dedup key for one revision of an issue body."""
    return f"{issue_url}#body-{body_hash}"


class StartStage:
    """Scheduler entry point: one RepoScan message per watched repository."""

    def __init__(self, watermark_store: WatermarkStore, bus: MessageBus) -> None:
        self._store = watermark_store
        self._bus = bus

    async def run(self) -> int:
        repositories = await self._store.list_watched()
        for repository in repositories:
            await self._bus.publish(REPO_TOPIC, RepoScanMessage(repository=repository).encode())
            log.debug("start.repository_queued", repository_url=repository.url)
        log.info("start.completed", repositories=len(repositories))
        return len(repositories)


class RepoScanStage:
    """Emit an IssueScan for each issue updated since the watermark, then advance it.

    The watermark moves to the time this scan *started*, and only after every
    IssueScan publish succeeded.
    """

    def __init__(
        self,
        collector: Collector,
        watermark_store: WatermarkStore,
        bus: MessageBus,
        settings: Settings,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._collector = collector
        self._store = watermark_store
        self._bus = bus
        self._settings = settings
        self._clock = clock

    async def handle(self, payload: str) -> int:
        message = decode(RepoScanMessage, payload)
        return await self.scan(message.repository)

    async def scan(self, repository: WatchedRepository) -> int:
        """Scan one repository.  Returns the number of IssueScan messages emitted."""
        started_at = self._clock()
        slog = log.bind(repository_url=repository.url)
        try:
            cutoff = await self._cutoff(repository, started_at)
            issues = await self._collector.list_issues(repository.url)
            slog.info("repo_scan.issues_found", issue_count=len(issues))

            # Downstream stages compare against the cutoff actually used here.
            scoped = replace(repository, last_scanned_at=cutoff)
            emitted = 0
            for issue in issues:
                if not _qualifies(issue.updated_at, cutoff):
                    slog.debug("repo_scan.issue_skipped", issue_url=issue.url)
                    continue
                await self._bus.publish(
                    ISSUE_TOPIC, IssueScanMessage(repository=scoped, issue=issue).encode()
                )
                emitted += 1

            await self._store.advance(repository.url, started_at)
        except Exception as exc:
            slog.error("repo_scan.failed", error=f"{type(exc).__name__}: {exc}")
            raise

        slog.info("repo_scan.completed", emitted=emitted, watermark=started_at.isoformat())
        return emitted

    async def _cutoff(
        self, repository: WatchedRepository, started_at: datetime
    ) -> datetime | None:
        """Later of the message's watermark and the stored one.

        Reading the store makes a redelivered RepoScan (whose payload still
        holds the old watermark) see the advanced value and emit nothing new.
        """
        current = await self._store.get(repository.url)
        if current is None:
            raise StoreError(f"repository not registered: {repository.url}")
        marks = [m for m in (repository.last_scanned_at, current.last_scanned_at) if m is not None]
        if marks:
            return max(marks)
        if self._settings.first_scan_days > 0:
            return started_at - timedelta(days=self._settings.first_scan_days)
        return None


class CommentScanStage:
    """Record the comment in the dedup store; alert only on first sight."""

    def __init__(
        self,
        dedup_store: DedupStore,
        notifier: Notifier,
        settings: Settings,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._dedup = dedup_store
        self._notifier = notifier
        self._settings = settings
        self._clock = clock

    async def handle(self, payload: str) -> bool:
        message = decode(CommentScanMessage, payload)
        return await self.process(message.repository, message.issue, message.comment)

    async def process(self, repository: WatchedRepository, issue: Issue, comment: Comment) -> bool:
        """Returns True if an alert was sent.

        A :class:`StoreError` from the dedup store propagates before any
        alert is attempted.
        """
        clog = log.bind(repository_url=repository.url, comment_url=comment.url)
        already_handled = await self._dedup.try_mark_handled(
            comment.url, comment.content_hash, self._clock()
        )
        if already_handled:
            clog.info("comment_scan.already_processed")
            return False

        signals = find_security_signals(comment.body_text, self._settings.security_keywords)
        if not signals:
            clog.info("comment_scan.no_security_content")
            if self._settings.gate_comments:
                return False

        clog.info("comment_scan.notifying", signals=signals)
        await self._notifier.notify(repository, issue, comment)
        return True


class IssueScanStage:
    """Fetch an issue's comments, alert on its body, fan out its comments."""

    def __init__(
        self,
        collector: Collector,
        dedup_store: DedupStore,
        notifier: Notifier,
        bus: MessageBus,
        settings: Settings,
        *,
        comment_stage: CommentScanStage | None = None,
        clock: Clock = utcnow,
    ) -> None:
        if settings.collapse_comment_stage and comment_stage is None:
            raise ValueError("collapse_comment_stage requires a comment_stage")
        self._collector = collector
        self._dedup = dedup_store
        self._notifier = notifier
        self._bus = bus
        self._settings = settings
        self._comment_stage = comment_stage
        self._clock = clock

    async def handle(self, payload: str) -> int:
        message = decode(IssueScanMessage, payload)
        return await self.scan(message.repository, message.issue)

    async def scan(self, repository: WatchedRepository, issue: Issue) -> int:
        """Returns the number of comments handed on (published or processed inline)."""
        cutoff = repository.last_scanned_at
        ilog = log.bind(repository_url=repository.url, issue_url=issue.url)
        try:
            comments = await self._collector.list_comments(issue.owner, issue.repo, issue.number)
            ilog.info("issue_scan.comments_found", comment_count=len(comments))

            if _qualifies(issue.updated_at, cutoff):
                await self._check_issue_body(repository, issue)

            handed_on = 0
            for comment in comments:
                if not _qualifies(comment.updated_at, cutoff):
                    ilog.debug("issue_scan.previously_checked", comment_url=comment.url)
                    continue
                if self._settings.collapse_comment_stage:
                    await self._comment_stage.process(repository, issue, comment)
                else:
                    await self._bus.publish(
                        COMMENT_TOPIC,
                        CommentScanMessage(
                            repository=repository, issue=issue, comment=comment
                        ).encode(),
                    )
                handed_on += 1
        except Exception as exc:
            ilog.error("issue_scan.failed", error=f"{type(exc).__name__}: {exc}")
            raise
        return handed_on

    async def _check_issue_body(self, repository: WatchedRepository, issue: Issue) -> None:
        ilog = log.bind(repository_url=repository.url, issue_url=issue.url)
        signal = contains_security_signal(issue.body_text, self._settings.security_keywords)
        if self._settings.gate_issue_body and not signal:
            return
        # Keyed by URL and body hash: redelivery alerts once, an edited body alerts again.
        body_hash = content_hash(issue.body_text)
        already_handled = await self._dedup.try_mark_handled(
            issue_body_key(issue.url, body_hash), body_hash, self._clock()
        )
        if already_handled:
            ilog.info("issue_scan.body_already_processed")
            return
        ilog.info("issue_scan.notifying_on_body", signal=signal)
        await self._notifier.notify(repository, issue)
