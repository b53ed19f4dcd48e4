"""Generic base DAO — lookups (ORM) and dialect-aware insert-if-absent (Core)."""

from typing import Any, Generic, TypeVar

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from watchman.core.database import Base

ModelT = TypeVar("ModelT", bound=Base)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class BaseDAO(Generic[ModelT]):
    """Base data-access object. Subclasses set ``model`` class attribute."""

    model: type[ModelT]

    # ── ORM methods ──────────────────────────────────────────────────────

    @staticmethod
    def _require_pk(pk: Any) -> None:
        """Raise ValueError if *pk* is None."""
        if pk is None:
            raise ValueError("pk must not be None")

    async def get_by_id(self, session: AsyncSession, pk: Any) -> ModelT | None:
        self._require_pk(pk)
        return await session.get(self.model, pk)

    # ── Core methods ─────────────────────────────────────────────────────

    async def insert_ignore(
        self,
        session: AsyncSession,
        values: dict[str, Any],
        *,
        conflict_columns: list[str],
        model: type[Base] | None = None,
    ) -> bool:
        """``INSERT ... ON CONFLICT (conflict_columns) DO NOTHING``.

        Returns True when the row was inserted, False when it already
        existed.  The statement is a single round-trip, so concurrent callers
        racing on the same key see exactly one winner.
        """
        target = model or self.model
        dialect = session.get_bind().dialect.name
        try:
            insert = _INSERTS[dialect]
        except KeyError:
            raise NotImplementedError(f"insert-if-absent not supported on {dialect!r}") from None
        stmt = insert(target).values(**values).on_conflict_do_nothing(
            index_elements=conflict_columns,
        )
        result = await session.execute(stmt)
        return result.rowcount == 1
