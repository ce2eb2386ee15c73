"""Ledger: strongly consistent object store over the ledger store.

Every mutation happens inside :meth:`Ledger.transaction`, which maps one
ledger transaction onto one database transaction: all records added, changed
or deleted inside the block commit together or not at all.

Usage::

    async with ledger.transaction() as tx:
        vault = await tx.require(Vault, vault_id, ErrVaultNotFound)
        await tx.add(Item(...))
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from doauth.engine.models.base import Base, LedgerTimeMixin

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.sql import Executable, Select

    from doauth.datastore.store import LedgerStore
    from doauth.errors.doauth_errors import DOAuthError
    from doauth.ledger.clock import Clock

ModelT = TypeVar("ModelT", bound=Base)


class LedgerView:
    """Read access to ledger records pinned to one ledger time reading."""

    def __init__(self, session: AsyncSession, now: int) -> None:
        self._session = session
        self.now = now

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def get(self, model: type[ModelT], object_id: Any) -> ModelT | None:
        """Fetch a record by primary key, or None."""
        return await self._session.get(model, object_id)

    async def require(self, model: type[ModelT], object_id: Any, error: DOAuthError) -> ModelT:
        """Fetch a record by primary key or raise *error*."""
        record = await self._session.get(model, object_id)
        if record is None:
            raise error
        return record

    async def scalars(self, stmt: Select[Any]) -> Sequence[Any]:
        """Run a select and return all scalar results."""
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def scalar(self, stmt: Select[Any]) -> Any:
        """Run a select and return the single scalar result, or None."""
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


class LedgerTransaction(LedgerView):
    """Mutable view; writes are flushed in call order and committed on exit."""

    async def add(self, record: ModelT) -> ModelT:
        """Create a record, stamping its creation time with ledger time."""
        if isinstance(record, LedgerTimeMixin):
            record.created_at = self.now
        self._session.add(record)
        await self._session.flush()
        return record

    async def delete(self, record: Base) -> None:
        """Destroy a record."""
        await self._session.delete(record)
        await self._session.flush()

    async def execute(self, stmt: Executable) -> int:
        """Run a bulk DML statement and return the affected row count."""
        result = await self._session.execute(stmt)
        return result.rowcount

    async def flush(self) -> None:
        """Push pending attribute changes so later statements see them."""
        await self._session.flush()


class Ledger:
    """Ledger facade over a :class:`LedgerStore` and a :class:`Clock`."""

    def __init__(self, store: LedgerStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock

    @property
    def clock(self) -> Clock:
        return self._clock

    def now(self) -> int:
        """Current ledger time in epoch millis."""
        return self._clock.now_ms()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[LedgerTransaction]:
        """Open an atomic transaction. Any exception rolls back every write."""
        async with self._store.session() as session, session.begin():
            yield LedgerTransaction(session, self.now())

    @asynccontextmanager
    async def view(self) -> AsyncIterator[LedgerView]:
        """Open a read-only view. Nothing is committed."""
        async with self._store.session() as session:
            yield LedgerView(session, self.now())
