"""HandledCommentDAO — handled_comments table operations."""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from watchman.dao.base import BaseDAO
from watchman.models.handled_comment import HandledComment


class HandledCommentDAO(BaseDAO[HandledComment]):
    model = HandledComment

    async def insert_if_absent(
        self,
        session: AsyncSession,
        *,
        url: str,
        content_hash: str,
        handled_at: datetime,
    ) -> bool:
        """First-writer-wins insert keyed by URL.  Returns True if inserted."""
        return await self.insert_ignore(
            session,
            {"url": url, "content_hash": content_hash, "handled_at": handled_at},
            conflict_columns=["url"],
        )
