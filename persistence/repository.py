"""
persistence/repository.py -- Generic repository for AuditableEntity subclasses.

Pattern: Repository. One instance per (unit of work, entity type); obtain it
with uow.repository(Course). Reads go through the audited session, so the
soft-delete filter applies unless include_deleted=True is asked for.

Absent and soft-deleted rows are the same thing to a default read: both come
back as a NotFound Result failure, never an exception.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Generic, TypeVar

from sqlalchemy import select

from core.result import Error, Result
from persistence.entities import AuditableEntity
from persistence.soft_delete import include_deleted as _include_deleted

if TYPE_CHECKING:
    from persistence.unit_of_work import UnitOfWork

E = TypeVar("E", bound=AuditableEntity)


class Repository(Generic[E]):
    def __init__(self, uow: UnitOfWork, model: type[E]) -> None:
        if not issubclass(model, AuditableEntity):
            raise TypeError(f"{model.__name__} is not an AuditableEntity.")
        self._uow = uow
        self._model = model

    @property
    def model(self) -> type[E]:
        return self._model

    def add(self, entity: E) -> E:
        self._uow.session.add(entity)
        return entity

    def get(self, entity_id: uuid.UUID, include_deleted: bool = False) -> Result[E]:
        stmt = select(self._model).where(self._model.id == entity_id)
        if include_deleted:
            stmt = _include_deleted(stmt)
        entity = self._uow.run(lambda: self._uow.session.scalars(stmt).one_or_none())
        if entity is None:
            return Result.failure(
                Error.not_found(
                    f"{self._model.__name__}.NotFound",
                    f'Entity "{self._model.__name__}" ({entity_id}) was not found.',
                )
            )
        return Result.success(entity)

    def list(self, include_deleted: bool = False) -> list[E]:
        stmt = select(self._model).order_by(self._model.created_at, self._model.id)
        if include_deleted:
            stmt = _include_deleted(stmt)
        return self._uow.run(lambda: list(self._uow.session.scalars(stmt)))

    def remove(self, entity: E) -> None:
        """Request deletion. The save pipeline turns it into a soft delete."""
        self._uow.session.delete(entity)

    def restore(self, entity_id: uuid.UUID) -> Result[E]:
        result = self.get(entity_id, include_deleted=True)
        if result.is_success:
            result.value.restore()
        return result

    async def get_async(self, entity_id: uuid.UUID, include_deleted: bool = False) -> Result[E]:
        return await self._uow.run_async(self.get, entity_id, include_deleted)

    async def list_async(self, include_deleted: bool = False) -> list[E]:
        return await self._uow.run_async(self.list, include_deleted)
