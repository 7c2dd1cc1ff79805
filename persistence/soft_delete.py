"""
persistence/soft_delete.py -- Standing "is_deleted == false" predicate.

Every ORM SELECT issued through an audited session gets
with_loader_criteria(AuditableEntity, ...) composed in by a do_orm_execute
listener. The criteria propagate to joins, relationship loads and lazy loads,
so callers cannot forget to filter.

The only way around it is the include_deleted execution option, set per
statement:

    stmt = include_deleted(select(Course).where(Course.id == course_id))

Code that bypasses the ORM (Core text() queries, reports) must apply
not_deleted(Model) itself.
"""

from __future__ import annotations

from sqlalchemy import Select, event
from sqlalchemy.orm import ORMExecuteState, Session, sessionmaker, with_loader_criteria

from persistence.entities import AuditableEntity

INCLUDE_DELETED = "include_deleted"


def install(target: sessionmaker | type[Session]) -> None:
    event.listen(target, "do_orm_execute", _apply_soft_delete_criteria)


def include_deleted(stmt: Select) -> Select:
    """Mark a single statement as an administrative/audit read."""
    return stmt.execution_options(**{INCLUDE_DELETED: True})


def not_deleted(model: type[AuditableEntity]):
    return model.is_deleted.is_(False)


def _apply_soft_delete_criteria(state: ORMExecuteState) -> None:
    if (
        state.is_select
        and state.is_orm_statement
        and not state.is_column_load
        and not state.is_relationship_load
        and not state.execution_options.get(INCLUDE_DELETED, False)
    ):
        state.statement = state.statement.options(
            with_loader_criteria(
                AuditableEntity,
                lambda cls: cls.is_deleted.is_(False),
                include_aliases=True,
            )
        )
