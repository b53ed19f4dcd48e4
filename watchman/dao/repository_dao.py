"""RepositoryDAO — repositories / repository_referrers table operations."""

from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from watchman.dao.base import BaseDAO
from watchman.models.repository import Repository, RepositoryReferrer


class RepositoryDAO(BaseDAO[Repository]):
    model = Repository

    # ── read ──────────────────────────────────────────────────────────────

    async def list_all(self, session: AsyncSession) -> list[Repository]:
        """Return every watched repository ordered by URL."""
        stmt = select(Repository).order_by(Repository.url)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    # ── write ─────────────────────────────────────────────────────────────

    async def add(self, session: AsyncSession, url: str, *, host: str) -> bool:
        """Create the repository row if absent.  Returns True if it was created."""
        return await self.insert_ignore(
            session,
            {"url": url, "host": host},
            conflict_columns=["url"],
        )

    async def add_referrer(self, session: AsyncSession, url: str, used_by_url: str) -> bool:
        """Add *used_by_url* to the referrer set of *url* (set semantics)."""
        return await self.insert_ignore(
            session,
            {"repository_url": url, "used_by_url": used_by_url},
            conflict_columns=["repository_url", "used_by_url"],
            model=RepositoryReferrer,
        )

    async def advance_watermark(
        self, session: AsyncSession, url: str, new_timestamp: datetime
    ) -> bool:
        """Move ``last_scanned_at`` forward to *new_timestamp*.

        Conditional single-statement update: rows whose watermark is already
        at or past *new_timestamp* are left alone, so the value never
        decreases.  Returns True if a row changed.
        """
        stmt = (
            update(Repository)
            .where(
                Repository.url == url,
                or_(
                    Repository.last_scanned_at.is_(None),
                    Repository.last_scanned_at < new_timestamp,
                ),
            )
            .values(last_scanned_at=new_timestamp)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount > 0
