"""Pipeline tests: stages wired onto the in-process bus over real SQL stores.

The collector is an in-memory fake; the watermark and dedup stores use the
database from conftest.  Every cycle runs under a frozen clock so the
watermark a scan writes is known in advance.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from watchman.engines.collector.models import Comment, Issue, WatchedRepository
from watchman.exceptions import (
    BusError,
    CollectionFailedError,
    MessageDecodeError,
    StoreError,
)
from watchman.interfaces import Alert, AlertSink, Collector
from watchman.pipeline import (
    COMMENT_TOPIC,
    CommentScanMessage,
    CommentScanStage,
    IssueScanMessage,
    IssueScanStage,
    RepoScanMessage,
    RepoScanStage,
    decode,
)
from watchman.wiring import build_pipeline

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
SCAN_START = T0 + timedelta(hours=1)
REPO_URL = "https://github.com/acme/widget"


def _issue(number: int, updated_at: datetime, body: str = "") -> Issue:
    return Issue(
        owner="acme",
        repo="widget",
        number=number,
        url=f"{REPO_URL}/issues/{number}",
        body_text=body,
        updated_at=updated_at,
    )


def _comment(issue: Issue, cid: int, updated_at: datetime, body: str = "") -> Comment:
    return Comment(
        owner=issue.owner,
        repo=issue.repo,
        issue_number=issue.number,
        url=f"{issue.url}#issuecomment-{cid}",
        body_text=body,
        updated_at=updated_at,
    )


class FakeCollector(Collector):
    def __init__(self):
        self.issues: dict[str, list[Issue]] = {}
        self.comments: dict[int, list[Comment]] = {}
        self.fail_issues: Exception | None = None
        self.comment_calls: list[int] = []

    async def list_issues(self, repository_url: str) -> list[Issue]:
        if self.fail_issues is not None:
            raise self.fail_issues
        return list(self.issues.get(repository_url, []))

    async def list_comments(self, owner: str, repo: str, issue_number: int) -> list[Comment]:
        self.comment_calls.append(issue_number)
        return list(self.comments.get(issue_number, []))


class RecordingSink(AlertSink):
    def __init__(self):
        self.alerts: list[Alert] = []
        self.closed = False

    async def send(self, alert: Alert) -> None:
        self.alerts.append(alert)

    async def close(self) -> None:
        self.closed = True


# ── fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def collector():
    return FakeCollector()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_pipeline(settings, session_factory, collector, sink):
    def _make(**overrides):
        return build_pipeline(
            dataclasses.replace(settings, **overrides),
            session_factory,
            collector,
            delivery_sink=sink,
            clock=lambda: SCAN_START,
        )

    return _make


async def _watch(pipeline, watermark: datetime | None = T0) -> None:
    await pipeline.watermarks.register(REPO_URL)
    if watermark is not None:
        await pipeline.watermarks.advance(REPO_URL, watermark)


async def _cycle(pipeline) -> int:
    await pipeline.start.run()
    return await pipeline.bus.drain()


# ── End-to-end cycles ─────────────────────────────────────────────────────


class TestScanCycle:
    @pytest.mark.asyncio
    async def test_only_newer_issues_and_comments_alert(self, make_pipeline, collector, sink):
        older = _issue(1, T0 - timedelta(seconds=1), body="old exploit")
        newer = _issue(2, T0 + timedelta(seconds=1), body="crash on startup")
        collector.issues[REPO_URL] = [older, newer]
        collector.comments[1] = [_comment(older, 10, T0 + timedelta(seconds=5), "exploit")]
        collector.comments[2] = [
            _comment(newer, 20, T0 - timedelta(seconds=5), "old exploit talk"),
            _comment(newer, 21, T0 + timedelta(seconds=2), "I found an exploit"),
        ]
        pipeline = make_pipeline()
        await _watch(pipeline)

        await _cycle(pipeline)

        assert collector.comment_calls == [2]
        assert sink.alerts == [
            Alert(
                subject=f"Possible security concern: {newer.url}#issuecomment-21",
                body="I found an exploit",
            )
        ]
        repo = await pipeline.watermarks.get(REPO_URL)
        assert repo.last_scanned_at == SCAN_START
        assert pipeline.bus.dead_letters == []

    @pytest.mark.asyncio
    async def test_second_cycle_emits_nothing(self, make_pipeline, collector, sink):
        issue = _issue(2, T0 + timedelta(seconds=1))
        collector.issues[REPO_URL] = [issue]
        collector.comments[2] = [_comment(issue, 21, T0 + timedelta(seconds=2), "exploit")]
        pipeline = make_pipeline()
        await _watch(pipeline)

        await _cycle(pipeline)
        await _cycle(pipeline)

        assert len(sink.alerts) == 1
        assert collector.comment_calls == [2]

    @pytest.mark.asyncio
    async def test_stale_repo_scan_message_is_idempotent(self, make_pipeline, collector, sink):
        collector.issues[REPO_URL] = [_issue(2, T0 + timedelta(seconds=1))]
        pipeline = make_pipeline()
        await _watch(pipeline)
        await _cycle(pipeline)

        # Redelivered message still carries the pre-advance watermark.
        emitted = await pipeline.repo_scan.scan(
            WatchedRepository(url=REPO_URL, last_scanned_at=T0)
        )
        assert emitted == 0

    @pytest.mark.asyncio
    async def test_never_scanned_repository_sees_everything(self, make_pipeline, collector, sink):
        issue = _issue(1, T0 - timedelta(days=365))
        collector.issues[REPO_URL] = [issue]
        collector.comments[1] = [_comment(issue, 10, T0 - timedelta(days=300), "hello")]
        pipeline = make_pipeline()
        await _watch(pipeline, watermark=None)

        await _cycle(pipeline)

        assert len(sink.alerts) == 1
        assert (await pipeline.watermarks.get(REPO_URL)).last_scanned_at == SCAN_START

    @pytest.mark.asyncio
    async def test_first_scan_window(self, make_pipeline, collector, sink):
        ancient = _issue(1, SCAN_START - timedelta(days=2))
        recent = _issue(2, SCAN_START - timedelta(hours=1))
        collector.issues[REPO_URL] = [ancient, recent]
        collector.comments[1] = [_comment(ancient, 10, SCAN_START - timedelta(days=2), "x")]
        collector.comments[2] = [_comment(recent, 20, SCAN_START - timedelta(hours=1), "y")]
        pipeline = make_pipeline(first_scan_days=1)
        await _watch(pipeline, watermark=None)

        await _cycle(pipeline)

        assert collector.comment_calls == [2]
        assert [a.body for a in sink.alerts] == ["y"]

    @pytest.mark.asyncio
    async def test_collection_failure_keeps_watermark(self, make_pipeline, collector, sink):
        collector.fail_issues = CollectionFailedError("graphql request failed")
        pipeline = make_pipeline()
        await _watch(pipeline)

        await _cycle(pipeline)

        assert (await pipeline.watermarks.get(REPO_URL)).last_scanned_at == T0
        assert len(pipeline.bus.dead_letters) == 1
        assert pipeline.bus.dead_letters[0].envelope.topic == "repo"
        assert pipeline.bus.dead_letters[0].envelope.attempts == 3
        assert sink.alerts == []

    @pytest.mark.asyncio
    async def test_close_releases_delivery_sink(self, make_pipeline, sink):
        await make_pipeline().close()
        assert sink.closed


# ── Comment redelivery and dedup ──────────────────────────────────────────


class TestCommentScan:
    @pytest.mark.asyncio
    async def test_redelivered_comment_alerts_once(self, make_pipeline, sink):
        pipeline = make_pipeline()
        issue = _issue(2, T0)
        comment = _comment(issue, 21, T0, "exploit")
        payload = CommentScanMessage(
            repository=WatchedRepository(url=REPO_URL), issue=issue, comment=comment
        ).encode()

        await pipeline.bus.publish(COMMENT_TOPIC, payload)
        await pipeline.bus.publish(COMMENT_TOPIC, payload)
        await pipeline.bus.drain()

        assert len(sink.alerts) == 1
        record = await pipeline.dedup.get(comment.url)
        assert record.content_hash == comment.content_hash
        assert record.handled_at == SCAN_START

    @pytest.mark.asyncio
    async def test_ungated_comment_without_keyword_alerts(self, make_pipeline, sink):
        pipeline = make_pipeline()
        issue = _issue(2, T0)
        sent = await pipeline.comment_scan.process(
            WatchedRepository(url=REPO_URL), issue, _comment(issue, 1, T0, "thanks!")
        )
        await pipeline.bus.drain()
        assert sent is True
        assert len(sink.alerts) == 1

    @pytest.mark.asyncio
    async def test_gated_comment_without_keyword_is_recorded_not_sent(self, make_pipeline, sink):
        pipeline = make_pipeline(gate_comments=True)
        issue = _issue(2, T0)
        comment = _comment(issue, 1, T0, "thanks!")

        sent = await pipeline.comment_scan.process(
            WatchedRepository(url=REPO_URL), issue, comment
        )
        await pipeline.bus.drain()

        assert sent is False
        assert sink.alerts == []
        assert await pipeline.dedup.get(comment.url) is not None

    @pytest.mark.asyncio
    async def test_store_failure_prevents_notify(self, settings):
        dedup = MagicMock()
        dedup.try_mark_handled = AsyncMock(side_effect=StoreError("db down"))
        notifier = MagicMock()
        notifier.notify = AsyncMock()
        stage = CommentScanStage(dedup, notifier, settings, clock=lambda: SCAN_START)
        issue = _issue(2, T0)

        with pytest.raises(StoreError):
            await stage.process(
                WatchedRepository(url=REPO_URL), issue, _comment(issue, 1, T0, "exploit")
            )
        notifier.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bad_payload_raises(self, make_pipeline):
        with pytest.raises(MessageDecodeError):
            await make_pipeline().comment_scan.handle('{"repository": {}}')


# ── Issue body ────────────────────────────────────────────────────────────


class TestIssueBody:
    @pytest.mark.asyncio
    async def test_body_with_keyword_alerts(self, make_pipeline, collector, sink):
        issue = _issue(2, T0 + timedelta(seconds=1), body="stored XSS in profile page")
        collector.issues[REPO_URL] = [issue]
        pipeline = make_pipeline()
        await _watch(pipeline)

        await _cycle(pipeline)

        assert sink.alerts == [
            Alert(subject=f"Possible security concern: {issue.url}", body=issue.body_text)
        ]

    @pytest.mark.asyncio
    async def test_body_without_keyword_is_gated(self, make_pipeline, collector, sink):
        collector.issues[REPO_URL] = [_issue(2, T0 + timedelta(seconds=1), body="typo")]
        pipeline = make_pipeline()
        await _watch(pipeline)

        await _cycle(pipeline)

        assert sink.alerts == []

    @pytest.mark.asyncio
    async def test_ungated_body_alerts(self, make_pipeline, collector, sink):
        collector.issues[REPO_URL] = [_issue(2, T0 + timedelta(seconds=1), body="typo")]
        pipeline = make_pipeline(gate_issue_body=False)
        await _watch(pipeline)

        await _cycle(pipeline)

        assert len(sink.alerts) == 1

    @pytest.mark.asyncio
    async def test_edited_body_alerts_again(
        self, settings, session_factory, collector, sink
    ):
        issue = _issue(2, T0 + timedelta(seconds=1), body="security bug")
        collector.issues[REPO_URL] = [issue]
        first = build_pipeline(
            settings, session_factory, collector, delivery_sink=sink, clock=lambda: SCAN_START
        )
        await _watch(first)
        await _cycle(first)

        later = SCAN_START + timedelta(hours=1)
        collector.issues[REPO_URL] = [
            dataclasses.replace(
                issue,
                body_text="new remote exploit found",
                updated_at=SCAN_START + timedelta(minutes=5),
            )
        ]
        second = build_pipeline(
            settings, session_factory, collector, delivery_sink=sink, clock=lambda: later
        )
        await _cycle(second)

        assert [a.body for a in sink.alerts] == ["security bug", "new remote exploit found"]
        assert all(a.subject == f"Possible security concern: {issue.url}" for a in sink.alerts)
        assert (await second.watermarks.get(REPO_URL)).last_scanned_at == later

    @pytest.mark.asyncio
    async def test_redelivered_issue_alerts_once(self, make_pipeline, sink):
        pipeline = make_pipeline()
        issue = _issue(2, T0 + timedelta(seconds=1), body="exploit")
        repository = WatchedRepository(url=REPO_URL, last_scanned_at=T0)

        await pipeline.issue_scan.scan(repository, issue)
        await pipeline.issue_scan.scan(repository, issue)
        await pipeline.bus.drain()

        assert len(sink.alerts) == 1


# ── Stage wiring variants ─────────────────────────────────────────────────


class TestCollapsedCommentStage:
    @pytest.mark.asyncio
    async def test_comments_processed_inline(self, make_pipeline, collector, sink):
        issue = _issue(2, T0 + timedelta(seconds=1))
        collector.issues[REPO_URL] = [issue]
        collector.comments[2] = [_comment(issue, 21, T0 + timedelta(seconds=2), "exploit")]

        split = make_pipeline()
        await _watch(split)
        assert await _cycle(split) == 4  # repo, issue, comment, alert

        sink.alerts.clear()
        collapsed = make_pipeline(collapse_comment_stage=True)
        await collapsed.watermarks.advance(REPO_URL, SCAN_START)
        collector.comments[2] = [_comment(issue, 22, SCAN_START, "exploit again")]
        collector.issues[REPO_URL] = [dataclasses.replace(issue, updated_at=SCAN_START)]
        assert await _cycle(collapsed) == 3  # repo, issue, alert
        assert [a.body for a in sink.alerts] == ["exploit again"]

    def test_collapse_requires_comment_stage(self, settings):
        with pytest.raises(ValueError):
            IssueScanStage(
                FakeCollector(),
                MagicMock(),
                MagicMock(),
                MagicMock(),
                dataclasses.replace(settings, collapse_comment_stage=True),
            )


class TestRepoScanStage:
    @pytest.mark.asyncio
    async def test_publish_failure_does_not_advance(self, settings, collector):
        collector.issues[REPO_URL] = [
            _issue(1, T0 + timedelta(seconds=1)),
            _issue(2, T0 + timedelta(seconds=2)),
        ]
        store = MagicMock()
        store.get = AsyncMock(return_value=WatchedRepository(url=REPO_URL, last_scanned_at=T0))
        store.advance = AsyncMock()
        bus = MagicMock()
        bus.publish = AsyncMock(side_effect=[None, BusError("queue full")])
        stage = RepoScanStage(collector, store, bus, settings, clock=lambda: SCAN_START)

        with pytest.raises(BusError):
            await stage.scan(WatchedRepository(url=REPO_URL, last_scanned_at=T0))
        store.advance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_issue_messages_carry_applied_cutoff(self, settings, collector):
        collector.issues[REPO_URL] = [_issue(1, T0 + timedelta(seconds=1))]
        later = T0 + timedelta(minutes=1)
        store = MagicMock()
        store.get = AsyncMock(return_value=WatchedRepository(url=REPO_URL, last_scanned_at=T0))
        store.advance = AsyncMock()
        bus = MagicMock()
        bus.publish = AsyncMock()
        stage = RepoScanStage(collector, store, bus, settings, clock=lambda: later)

        # An issue at T0+1s qualifies against the stored T0 watermark.
        assert await stage.scan(WatchedRepository(url=REPO_URL)) == 1
        _, payload = bus.publish.await_args.args
        message = decode(IssueScanMessage, payload)
        assert message.repository.last_scanned_at == T0
        store.advance.assert_awaited_once_with(REPO_URL, later)

    @pytest.mark.asyncio
    async def test_unregistered_repository_raises(self, make_pipeline):
        pipeline = make_pipeline()
        with pytest.raises(StoreError, match="not registered"):
            await pipeline.repo_scan.scan(WatchedRepository(url="https://github.com/ghost/x"))


# ── Messages ──────────────────────────────────────────────────────────────


class TestMessages:
    def test_repo_scan_round_trip(self):
        message = RepoScanMessage(
            repository=WatchedRepository(
                url=REPO_URL, used_by_urls=["https://github.com/acme/app"], last_scanned_at=T0
            )
        )
        assert decode(RepoScanMessage, message.encode()) == message

    def test_comment_scan_round_trip(self):
        issue = _issue(2, T0, body="body")
        message = CommentScanMessage(
            repository=WatchedRepository(url=REPO_URL),
            issue=issue,
            comment=_comment(issue, 1, T0, "text"),
        )
        decoded = decode(CommentScanMessage, message.encode())
        assert decoded.comment == message.comment
        assert decoded.issue.updated_at == T0

    def test_decode_rejects_wrong_shape(self):
        with pytest.raises(MessageDecodeError):
            decode(RepoScanMessage, '{"repository": {"url": 5}}')
        with pytest.raises(MessageDecodeError):
            decode(IssueScanMessage, "not json")
