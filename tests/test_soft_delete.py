"""
tests/test_soft_delete.py -- Soft-delete rewrite and the standing query filter.

Covers:
  - remove() becomes an UPDATE: the row survives with is_deleted/deleted_*
  - default reads hide deleted rows; include_deleted reads see them
  - absent and deleted rows both come back as a NotFound failure
  - restore() brings a row back and clears deleted_*
  - flipping is_deleted directly keeps deleted_* consistent
  - rows deleted in a session are evicted from its identity map
  - deleting an already deleted row keeps the first deleter
  - Core statements see the physical row; not_deleted() filters it
"""

from __future__ import annotations

import asyncio
import uuid

from conftest import Course
from sqlalchemy import func, select

from core.actor import Actor, RequestActorResolver
from core.result import ErrorKind
from persistence.soft_delete import include_deleted, not_deleted
from persistence.unit_of_work import UnitOfWork


def _resolver(user_id: str) -> RequestActorResolver:
    return RequestActorResolver(Actor(user_id=user_id, is_authenticated=True))


def _create(session_factory, title: str = "Welding I", user_id: str = "creator") -> uuid.UUID:
    with UnitOfWork(session_factory, _resolver(user_id)) as uow:
        course = uow.repository(Course).add(Course(title=title))
        uow.save_changes()
        return course.id


def _delete(session_factory, course_id: uuid.UUID, user_id: str = "deleter") -> None:
    with UnitOfWork(session_factory, _resolver(user_id)) as uow:
        repo = uow.repository(Course)
        repo.remove(repo.get(course_id).value)
        uow.save_changes()


class TestSoftDelete:
    def test_delete_marks_row_instead_of_removing(self, session_factory, clock) -> None:
        course_id = _create(session_factory)
        clock.advance(minutes=1)
        _delete(session_factory, course_id)

        with UnitOfWork(session_factory) as uow:
            stored = uow.repository(Course).get(course_id, include_deleted=True).value
            conn = uow.session.connection()
            physical = conn.execute(select(func.count()).select_from(Course.__table__)).scalar_one()

        assert physical == 1
        assert stored.is_deleted is True
        assert stored.deleted_by == "deleter"
        assert stored.deleted_at == clock.now
        assert stored.created_by == "creator"

    def test_default_reads_hide_deleted_rows(self, session_factory) -> None:
        keep = _create(session_factory, "Keep")
        gone = _create(session_factory, "Gone")
        _delete(session_factory, gone)

        with UnitOfWork(session_factory) as uow:
            repo = uow.repository(Course)
            assert [c.id for c in repo.list()] == [keep]
            assert {c.id for c in repo.list(include_deleted=True)} == {keep, gone}
            assert uow.session.scalars(select(Course).where(Course.title == "Gone")).first() is None
            opted_out = uow.session.scalars(include_deleted(select(Course).where(Course.title == "Gone"))).first()
            assert opted_out is not None and opted_out.id == gone

    def test_deleted_and_absent_are_both_not_found(self, session_factory) -> None:
        gone = _create(session_factory)
        _delete(session_factory, gone)
        missing = uuid.uuid4()

        with UnitOfWork(session_factory) as uow:
            repo = uow.repository(Course)
            for course_id in (gone, missing):
                result = repo.get(course_id)
                assert result.is_failure
                assert result.error.kind is ErrorKind.NOT_FOUND
                assert result.error.code == "Course.NotFound"
                assert str(course_id) in result.error.message

    def test_restore_makes_row_visible_again(self, session_factory) -> None:
        course_id = _create(session_factory)
        _delete(session_factory, course_id)

        with UnitOfWork(session_factory, _resolver("restorer")) as uow:
            assert uow.repository(Course).restore(course_id).is_success
            uow.save_changes()

        with UnitOfWork(session_factory) as uow:
            restored = uow.repository(Course).get(course_id).value
        assert restored.is_deleted is False
        assert restored.deleted_at is None
        assert restored.deleted_by is None
        assert restored.updated_by == "restorer"

    def test_restore_of_missing_id_is_not_found(self, session_factory) -> None:
        with UnitOfWork(session_factory) as uow:
            assert uow.repository(Course).restore(uuid.uuid4()).is_failure

    def test_setting_is_deleted_directly_fills_deleted_fields(self, session_factory) -> None:
        course_id = _create(session_factory)

        with UnitOfWork(session_factory, _resolver("flipper")) as uow:
            course = uow.repository(Course).get(course_id).value
            course.is_deleted = True
            uow.save_changes()

        with UnitOfWork(session_factory) as uow:
            stored = uow.repository(Course).get(course_id, include_deleted=True).value
        assert stored.is_deleted is True
        assert stored.deleted_by == "flipper"
        assert stored.deleted_at is not None

    def test_clearing_is_deleted_directly_clears_deleted_fields(self, session_factory) -> None:
        course_id = _create(session_factory)
        _delete(session_factory, course_id)

        with UnitOfWork(session_factory) as uow:
            course = uow.repository(Course).get(course_id, include_deleted=True).value
            course.is_deleted = False
            uow.save_changes()

        with UnitOfWork(session_factory) as uow:
            stored = uow.repository(Course).get(course_id).value
        assert stored.deleted_at is None
        assert stored.deleted_by is None

    def test_deleted_row_leaves_the_identity_map(self, session_factory) -> None:
        with UnitOfWork(session_factory, _resolver("deleter")) as uow:
            repo = uow.repository(Course)
            course = repo.add(Course(title="Short lived"))
            uow.save_changes()
            repo.remove(course)
            uow.save_changes()

            assert uow.session.get(Course, course.id) is None
            assert repo.get(course.id).is_failure
            # the detached instance still carries what was written
            assert course.is_deleted is True
            assert course.deleted_by == "deleter"

    def test_directly_flipped_row_leaves_the_identity_map(self, session_factory) -> None:
        course_id = _create(session_factory)

        with UnitOfWork(session_factory, _resolver("flipper")) as uow:
            course = uow.repository(Course).get(course_id).value
            course.is_deleted = True
            uow.save_changes()
            assert uow.session.get(Course, course_id) is None

    def test_deleting_again_keeps_the_original_stamps(self, session_factory, clock) -> None:
        course_id = _create(session_factory)
        _delete(session_factory, course_id, user_id="first")
        with UnitOfWork(session_factory) as uow:
            original = uow.repository(Course).get(course_id, include_deleted=True).value

        clock.advance(hours=1)
        with UnitOfWork(session_factory, _resolver("second")) as uow:
            repo = uow.repository(Course)
            repo.remove(repo.get(course_id, include_deleted=True).value)
            uow.save_changes()

        with UnitOfWork(session_factory) as uow:
            stored = uow.repository(Course).get(course_id, include_deleted=True).value
        assert stored.is_deleted is True
        assert stored.deleted_by == "first"
        assert stored.deleted_at == original.deleted_at
        assert stored.updated_at == original.updated_at

    def test_restore_then_delete_in_one_save_stamps_again(self, session_factory, clock) -> None:
        course_id = _create(session_factory)
        _delete(session_factory, course_id, user_id="first")

        clock.advance(hours=1)
        with UnitOfWork(session_factory, _resolver("second")) as uow:
            repo = uow.repository(Course)
            course = repo.restore(course_id).value
            repo.remove(course)
            uow.save_changes()

        with UnitOfWork(session_factory) as uow:
            stored = uow.repository(Course).get(course_id, include_deleted=True).value
        assert stored.is_deleted is True
        assert stored.deleted_by == "second"
        assert stored.deleted_at == clock.now

    def test_async_reads_apply_the_filter(self, session_factory) -> None:
        gone = _create(session_factory)
        _delete(session_factory, gone)

        async def scenario():
            with UnitOfWork(session_factory) as uow:
                repo = uow.repository(Course)
                return await repo.get_async(gone), await repo.list_async(include_deleted=True)

        result, everything = asyncio.run(scenario())
        assert result.is_failure
        assert [c.id for c in everything] == [gone]


class TestNotDeletedHelper:
    def test_core_queries_need_the_explicit_predicate(self, session_factory) -> None:
        _create(session_factory, "Keep")
        gone = _create(session_factory, "Gone")
        _delete(session_factory, gone)

        table = Course.__table__
        with UnitOfWork(session_factory) as uow:
            conn = uow.session.connection()
            everything = conn.execute(select(func.count()).select_from(table)).scalar_one()
            visible = conn.execute(select(func.count()).select_from(table).where(not_deleted(Course))).scalar_one()

        assert everything == 2
        assert visible == 1
