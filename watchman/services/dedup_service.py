"""DedupService — the first-writer-wins record of handled comments."""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from watchman.dao.handled_comment_dao import HandledCommentDAO
from watchman.exceptions import StoreError
from watchman.interfaces import DedupStore, HandledCommentRecord

log = structlog.get_logger("watchman.store")


class DedupService(DedupStore):
    """SQL-backed :class:`DedupStore`.

    Database errors are raised as :class:`StoreError`.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        handled_comment_dao: HandledCommentDAO | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._dao = handled_comment_dao or HandledCommentDAO()

    async def try_mark_handled(
        self, comment_url: str, content_hash: str, handled_at: datetime
    ) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    inserted = await self._dao.insert_if_absent(
                        session,
                        url=comment_url,
                        content_hash=content_hash,
                        handled_at=handled_at,
                    )
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to record comment {comment_url}: {exc}") from exc

        log.debug("dedup.mark", comment_url=comment_url, already_handled=not inserted)
        return not inserted

    async def get(self, comment_url: str) -> HandledCommentRecord | None:
        try:
            async with self._session_factory() as session:
                row = await self._dao.get_by_id(session, comment_url)
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to read comment record {comment_url}: {exc}") from exc
        if row is None:
            return None
        return HandledCommentRecord(
            url=row.url, content_hash=row.content_hash, handled_at=row.handled_at
        )
