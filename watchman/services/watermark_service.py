"""WatermarkService — the durable per-repository scan watermark."""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from watchman.core.github import GITHUB_HOST, canonical_repo_url
from watchman.dao.repository_dao import RepositoryDAO
from watchman.engines.collector.models import WatchedRepository
from watchman.exceptions import StoreError
from watchman.interfaces import WatermarkStore
from watchman.models.repository import Repository

log = structlog.get_logger("watchman.store")


class WatermarkService(WatermarkStore):
    """SQL-backed :class:`WatermarkStore`.

    Every operation runs in its own short transaction, so each call is
    atomic on its own and no session outlives a call.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository_dao: RepositoryDAO | None = None,
        *,
        host: str = GITHUB_HOST,
    ) -> None:
        self._session_factory = session_factory
        self._dao = repository_dao or RepositoryDAO()
        self._host = host

    async def list_watched(self) -> list[WatchedRepository]:
        try:
            async with self._session_factory() as session:
                repos = await self._dao.list_all(session)
                return [_to_watched(r) for r in repos]
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to list repositories: {exc}") from exc

    async def get(self, repository_url: str) -> WatchedRepository | None:
        try:
            async with self._session_factory() as session:
                repo = await self._dao.get_by_id(session, repository_url)
                return _to_watched(repo) if repo is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to read repository {repository_url}: {exc}") from exc

    async def advance(self, repository_url: str, new_timestamp: datetime) -> None:
        """Move the watermark of *repository_url* forward to *new_timestamp*.

        Raises :class:`StoreError` if the repository is not registered.
        Advancing to a time at or before the stored watermark is a no-op.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    changed = await self._dao.advance_watermark(
                        session, repository_url, new_timestamp
                    )
                    if not changed and await self._dao.get_by_id(session, repository_url) is None:
                        raise StoreError(f"repository not registered: {repository_url}")
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to advance watermark for {repository_url}: {exc}") from exc

        if changed:
            log.info(
                "watermark.advanced",
                repository_url=repository_url,
                to=new_timestamp.isoformat(),
            )
        else:
            log.debug("watermark.unchanged", repository_url=repository_url)

    async def register(
        self, repository_url: str, used_by_url: str | None = None
    ) -> WatchedRepository:
        """Idempotently start watching *repository_url*.

        The URL is validated and canonicalised first.  *used_by_url*, if
        given, is added to the repository's referrer set.
        """
        url = canonical_repo_url(repository_url, host=self._host)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    created = await self._dao.add(session, url, host=self._host)
                    if used_by_url:
                        await self._dao.add_referrer(session, url, used_by_url)
                repo = await self._dao.get_by_id(session, url)
                watched = _to_watched(repo)
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to register repository {url}: {exc}") from exc

        log.info("repository.registered", repository_url=url, created=created, used_by=used_by_url)
        return watched


def _to_watched(repo: Repository) -> WatchedRepository:
    return WatchedRepository(
        url=repo.url,
        used_by_urls=[r.used_by_url for r in repo.referrers],
        last_scanned_at=repo.last_scanned_at,
    )
