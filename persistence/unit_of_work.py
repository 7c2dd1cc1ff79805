"""
persistence/unit_of_work.py -- Commit boundary for one request.

Pattern: Unit of Work. One UnitOfWork owns one Session for the lifetime of a
request. Repositories obtained from it share that session, so every change
they stage lands in the same commit.

Two ways to commit:

  Lone save -- save_changes() commits immediately. Atomic by itself.

  Explicit transaction -- for multi-step workflows:

      async with uow.transaction():
          courses.add(course)
          await uow.save_changes_async()      # flush only, still revocable
          sessions.add(first_session)
          await uow.save_changes_async()
      # committed here; any exception (including cancellation) rolls back

The audit interceptor fires inside every flush, so both paths stamp audit
columns before the physical write.

Commit failures (IntegrityError, OperationalError, ...) are infrastructure
faults: the session is rolled back and the SQLAlchemy exception propagates
unchanged. There are no automatic retries.

Concurrency: Session objects are not thread-safe. Async variants push the
blocking work to a worker thread with asyncio.to_thread and hold a lock
around every session operation, so a rollback issued after a cancelled await
waits for the in-flight flush instead of racing it.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from core.actor import ActorResolver, SystemActorResolver
from persistence.interceptor import ACTOR_RESOLVER_KEY

if TYPE_CHECKING:
    from persistence.entities import AuditableEntity
    from persistence.repository import Repository

logger = logging.getLogger("trainingcrm.persistence")

R = TypeVar("R")
E = TypeVar("E", bound="AuditableEntity")


class TransactionStateError(RuntimeError):
    """Raised on begin/commit calls that do not match the transaction state."""


class UnitOfWork:
    def __init__(self, session_factory: sessionmaker, actor_resolver: ActorResolver | None = None) -> None:
        resolver = actor_resolver if actor_resolver is not None else SystemActorResolver()
        self._session: Session = session_factory(info={ACTOR_RESOLVER_KEY: resolver})
        self._lock = threading.RLock()
        self._in_transaction = False
        self._closed = False

    @property
    def session(self) -> Session:
        return self._session

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def repository(self, model: type[E]) -> Repository[E]:
        from persistence.repository import Repository

        return Repository(self, model)

    # ------------------------------------------------------------------
    # Sync API
    # ------------------------------------------------------------------

    def save_changes(self) -> int:
        """Write pending changes. Returns the number of affected entities.

        Outside an explicit transaction this commits. Inside one it only
        flushes; commit_transaction() makes the work durable.
        """
        with self._lock:
            count = self._pending_count()
            try:
                if self._in_transaction:
                    self._session.flush()
                else:
                    self._session.commit()
            except Exception:
                logger.warning("save_changes failed; rolling back unit of work", exc_info=True)
                self._reset()
                raise
            return count

    def begin_transaction(self) -> None:
        with self._lock:
            if self._in_transaction:
                raise TransactionStateError("A transaction is already in progress on this unit of work.")
            if not self._session.in_transaction():
                self._session.begin()
            self._in_transaction = True

    def commit_transaction(self) -> None:
        with self._lock:
            if not self._in_transaction:
                raise TransactionStateError("No transaction in progress to commit.")
            try:
                self._session.commit()
            except Exception:
                logger.warning("commit_transaction failed; rolling back", exc_info=True)
                self._reset()
                raise
            self._in_transaction = False

    def rollback_transaction(self) -> None:
        """Discard everything since the last commit. Safe to call at any time."""
        with self._lock:
            self._reset()

    def run(self, fn: Callable[..., R], *args, **kwargs) -> R:
        """Run fn while holding the session lock."""
        with self._lock:
            return fn(*args, **kwargs)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._in_transaction:
                logger.warning("Unit of work closed with an open transaction; rolling back")
            # Session.close() discards uncommitted work without expiring loaded
            # instances, so entities stay readable after the unit of work ends.
            self._in_transaction = False
            self._session.close()
            self._closed = True

    def __enter__(self) -> UnitOfWork:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------

    async def save_changes_async(self) -> int:
        return await asyncio.to_thread(self.save_changes)

    async def begin_transaction_async(self) -> None:
        await asyncio.to_thread(self.begin_transaction)

    async def commit_transaction_async(self) -> None:
        await asyncio.to_thread(self.commit_transaction)

    async def rollback_transaction_async(self) -> None:
        await asyncio.to_thread(self.rollback_transaction)

    async def run_async(self, fn: Callable[..., R], *args, **kwargs) -> R:
        return await asyncio.to_thread(self.run, fn, *args, **kwargs)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        await self.begin_transaction_async()
        try:
            yield self
        except Exception:
            await self.rollback_transaction_async()
            raise
        except BaseException:
            # Cancellation: a further await could be cancelled before the
            # rollback runs, so roll back without yielding to the loop.
            self.rollback_transaction()
            raise
        await self.commit_transaction_async()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _pending_count(self) -> int:
        session = self._session
        modified = sum(1 for obj in session.dirty if session.is_modified(obj, include_collections=False))
        return len(session.new) + modified + len(session.deleted)

    def _reset(self) -> None:
        self._session.rollback()
        self._in_transaction = False
