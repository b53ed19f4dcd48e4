"""Dependency wiring — build the stores, stages and bus from Settings."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from watchman.core.config import Settings
from watchman.engines.collector.collector import GitHubCollector
from watchman.engines.collector.github_client import GitHubClient
from watchman.engines.notification.mailer import Mailer
from watchman.engines.notification.notifier import Notifier
from watchman.engines.notification.sinks import (
    ALERT_TOPIC,
    AlertDispatcher,
    BusAlertSink,
    EmailAlertSink,
    LogAlertSink,
    WebhookAlertSink,
)
from watchman.interfaces import AlertSink, Collector
from watchman.pipeline.bus import InProcessBus
from watchman.pipeline.messages import COMMENT_TOPIC, ISSUE_TOPIC, REPO_TOPIC
from watchman.pipeline.stages import (
    Clock,
    CommentScanStage,
    IssueScanStage,
    RepoScanStage,
    StartStage,
    utcnow,
)
from watchman.services.dedup_service import DedupService
from watchman.services.watermark_service import WatermarkService


@dataclass
class Pipeline:
    bus: InProcessBus
    watermarks: WatermarkService
    dedup: DedupService
    start: StartStage
    repo_scan: RepoScanStage
    issue_scan: IssueScanStage
    comment_scan: CommentScanStage
    delivery_sink: AlertSink

    async def close(self) -> None:
        await self.delivery_sink.close()


def build_delivery_sink(settings: Settings) -> AlertSink:
    """Pick the final alert channel: webhook, then email, else the log."""
    if settings.alert_webhook_url:
        return WebhookAlertSink(settings.alert_webhook_url, timeout=settings.http_timeout)
    if settings.notify_to and settings.smtp_user:
        mailer = Mailer(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.smtp_from,
        )
        return EmailAlertSink(mailer, settings.notify_to)
    return LogAlertSink()


def build_collector(settings: Settings) -> tuple[GitHubClient, Collector]:
    client = GitHubClient(settings.github_token, timeout=settings.http_timeout)
    return client, GitHubCollector(client, page_size=settings.page_size)


def build_pipeline(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    collector: Collector,
    *,
    delivery_sink: AlertSink | None = None,
    clock: Clock = utcnow,
) -> Pipeline:
    """Wire every stage onto a fresh :class:`InProcessBus`.

    Alerts go onto the bus's alert topic and are delivered to
    *delivery_sink* (default: :func:`build_delivery_sink`) by an
    :class:`AlertDispatcher`.
    """
    bus = InProcessBus(
        max_attempts=settings.bus_max_attempts,
        retry_base_delay=settings.bus_retry_delay,
    )
    watermarks = WatermarkService(session_factory)
    dedup = DedupService(session_factory)
    notifier = Notifier(BusAlertSink(bus, ALERT_TOPIC))

    comment_scan = CommentScanStage(dedup, notifier, settings, clock=clock)
    issue_scan = IssueScanStage(
        collector, dedup, notifier, bus, settings, comment_stage=comment_scan, clock=clock
    )
    repo_scan = RepoScanStage(collector, watermarks, bus, settings, clock=clock)
    start = StartStage(watermarks, bus)

    delivery_sink = delivery_sink or build_delivery_sink(settings)
    dispatcher = AlertDispatcher(delivery_sink)
    bus.subscribe(REPO_TOPIC, repo_scan.handle)
    bus.subscribe(ISSUE_TOPIC, issue_scan.handle)
    bus.subscribe(COMMENT_TOPIC, comment_scan.handle)
    bus.subscribe(ALERT_TOPIC, dispatcher.handle)

    return Pipeline(
        bus=bus,
        watermarks=watermarks,
        dedup=dedup,
        start=start,
        repo_scan=repo_scan,
        issue_scan=issue_scan,
        comment_scan=comment_scan,
        delivery_sink=delivery_sink,
    )
