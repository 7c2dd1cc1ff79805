"""
tests/test_unit_of_work.py -- Commit boundaries of persistence/unit_of_work.py.

Covers:
  - lone save_changes commits and returns the affected count
  - explicit transactions: commit, rollback, nothing visible before commit
  - cancellation and exceptions inside transaction() roll back; ordinary
    exceptions roll back on a worker thread
  - begin/commit state errors
  - constraint violations propagate unchanged and leave the unit usable
"""

from __future__ import annotations

import asyncio
import threading

import pytest
from conftest import Course
from sqlalchemy.exc import IntegrityError

from persistence.unit_of_work import TransactionStateError, UnitOfWork


def _titles(session_factory) -> list[str]:
    with UnitOfWork(session_factory) as uow:
        return sorted(c.title for c in uow.repository(Course).list(include_deleted=True))


class TestSaveChanges:
    def test_save_returns_affected_count(self, session_factory) -> None:
        with UnitOfWork(session_factory) as uow:
            repo = uow.repository(Course)
            repo.add(Course(title="A"))
            repo.add(Course(title="B"))
            assert uow.save_changes() == 2
            assert uow.save_changes() == 0
        assert _titles(session_factory) == ["A", "B"]

    def test_unsaved_changes_are_discarded_on_close(self, session_factory) -> None:
        with UnitOfWork(session_factory) as uow:
            uow.repository(Course).add(Course(title="Never saved"))
        assert _titles(session_factory) == []

    def test_integrity_error_propagates(self, session_factory) -> None:
        with UnitOfWork(session_factory) as uow:
            uow.repository(Course).add(Course(title="Dup"))
            uow.save_changes()

        with UnitOfWork(session_factory) as uow:
            uow.repository(Course).add(Course(title="Dup"))
            with pytest.raises(IntegrityError):
                uow.save_changes()
            # the unit of work was rolled back and can be used again
            uow.repository(Course).add(Course(title="Other"))
            assert uow.save_changes() == 1

        assert _titles(session_factory) == ["Dup", "Other"]


class TestExplicitTransaction:
    def test_commit_makes_all_steps_durable(self, session_factory) -> None:
        with UnitOfWork(session_factory) as uow:
            uow.begin_transaction()
            assert uow.in_transaction
            uow.repository(Course).add(Course(title="Step 1"))
            uow.save_changes()
            uow.repository(Course).add(Course(title="Step 2"))
            uow.save_changes()
            uow.commit_transaction()
            assert not uow.in_transaction
        assert _titles(session_factory) == ["Step 1", "Step 2"]

    def test_rollback_discards_flushed_steps(self, session_factory) -> None:
        with UnitOfWork(session_factory) as uow:
            uow.begin_transaction()
            uow.repository(Course).add(Course(title="Step 1"))
            assert uow.save_changes() == 1
            uow.rollback_transaction()
            assert not uow.in_transaction
        assert _titles(session_factory) == []

    def test_rollback_without_transaction_is_harmless(self, session_factory) -> None:
        with UnitOfWork(session_factory) as uow:
            uow.rollback_transaction()
            uow.rollback_transaction()

    def test_nested_begin_is_rejected(self, session_factory) -> None:
        with UnitOfWork(session_factory) as uow:
            uow.begin_transaction()
            with pytest.raises(TransactionStateError):
                uow.begin_transaction()

    def test_commit_without_begin_is_rejected(self, session_factory) -> None:
        with UnitOfWork(session_factory) as uow:
            with pytest.raises(TransactionStateError):
                uow.commit_transaction()

    def test_begin_after_a_read_is_allowed(self, session_factory) -> None:
        with UnitOfWork(session_factory) as uow:
            uow.repository(Course).list()
            uow.begin_transaction()
            uow.repository(Course).add(Course(title="After read"))
            uow.save_changes()
            uow.commit_transaction()
        assert _titles(session_factory) == ["After read"]


class TestAsyncTransaction:
    def test_context_manager_commits(self, session_factory) -> None:
        async def scenario() -> None:
            with UnitOfWork(session_factory) as uow:
                async with uow.transaction():
                    uow.repository(Course).add(Course(title="A"))
                    await uow.save_changes_async()
                    uow.repository(Course).add(Course(title="B"))
                    await uow.save_changes_async()
                assert not uow.in_transaction

        asyncio.run(scenario())
        assert _titles(session_factory) == ["A", "B"]

    def test_exception_inside_block_rolls_back(self, session_factory) -> None:
        async def scenario() -> None:
            with UnitOfWork(session_factory) as uow:
                async with uow.transaction():
                    uow.repository(Course).add(Course(title="A"))
                    await uow.save_changes_async()
                    raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            asyncio.run(scenario())
        assert _titles(session_factory) == []

    def test_cancellation_rolls_back(self, session_factory) -> None:
        async def work(uow: UnitOfWork, flushed) -> None:
            async with uow.transaction():
                uow.repository(Course).add(Course(title="Cancelled"))
                await uow.save_changes_async()
                flushed.set()
                await asyncio.sleep(3600)

        async def scenario() -> bool:
            flushed = asyncio.Event()
            with UnitOfWork(session_factory) as uow:
                task = asyncio.create_task(work(uow, flushed))
                await flushed.wait()
                task.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await task
                return uow.in_transaction

        assert asyncio.run(scenario()) is False
        assert _titles(session_factory) == []

    def test_failed_flush_inside_transaction_rolls_back_earlier_steps(self, session_factory) -> None:
        with UnitOfWork(session_factory) as uow:
            uow.repository(Course).add(Course(title="Dup"))
            uow.save_changes()

        async def scenario() -> None:
            with UnitOfWork(session_factory) as uow:
                async with uow.transaction():
                    uow.repository(Course).add(Course(title="Fresh"))
                    await uow.save_changes_async()
                    uow.repository(Course).add(Course(title="Dup"))
                    await uow.save_changes_async()

        with pytest.raises(IntegrityError):
            asyncio.run(scenario())
        assert _titles(session_factory) == ["Dup"]

    def test_exception_rollback_runs_off_the_event_loop(self, session_factory) -> None:
        rollback_threads: list[int] = []

        async def scenario() -> None:
            with UnitOfWork(session_factory) as uow:
                original = uow.rollback_transaction

                def recording_rollback() -> None:
                    rollback_threads.append(threading.get_ident())
                    original()

                uow.rollback_transaction = recording_rollback
                async with uow.transaction():
                    uow.repository(Course).add(Course(title="A"))
                    await uow.save_changes_async()
                    raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            asyncio.run(scenario())
        assert len(rollback_threads) == 1
        assert rollback_threads[0] != threading.get_ident()
        assert _titles(session_factory) == []
