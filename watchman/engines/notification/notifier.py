"""Notifier — render an alert for an issue or comment and hand it to a sink."""

from __future__ import annotations

import structlog

from watchman.engines.collector.models import Comment, Issue, WatchedRepository
from watchman.engines.notification.template import render_alert
from watchman.exceptions import NotifyError
from watchman.interfaces import AlertSink

log = structlog.get_logger("watchman.notification")


class Notifier:
    """Formats and emits one alert per call.

    Every sink error surfaces as :class:`NotifyError`.
    """

    def __init__(self, sink: AlertSink) -> None:
        self._sink = sink

    async def notify(
        self,
        repository: WatchedRepository,
        issue: Issue,
        comment: Comment | None = None,
    ) -> None:
        alert = render_alert(repository, issue, comment)
        try:
            await self._sink.send(alert)
        except Exception as exc:
            log.error(
                "notification.failed",
                repository_url=repository.url,
                issue_url=issue.url,
                comment_url=comment.url if comment is not None else None,
                error=str(exc),
            )
            raise NotifyError(f"failed to send alert {alert.subject!r}: {exc}") from exc

        log.info(
            "notification.sent",
            repository_url=repository.url,
            subject=alert.subject,
        )
