"""
persistence/interceptor.py -- Pre-commit audit stamping for AuditableEntity.

Pattern: Interceptor. AuditableEntityInterceptor listens to SQLAlchemy's
before_flush session event, which fires synchronously once per flush, before
the unit-of-work plan is computed. Mutations made here become part of the
same flush, so stamping needs no I/O of its own.

For every pending AuditableEntity in the change set:
  insert  -> created_at / created_by
  update  -> updated_at / updated_by (only when a column really changed)
  delete  -> rewritten into an update: is_deleted, deleted_at, deleted_by.
             The instance is re-added to the session, which cancels the
             pending DELETE. Rows are never physically removed here.
             A row that is already soft-deleted keeps its deleted_* stamps.

after_flush_postexec then expunges every row soft-deleted by the flush, so
session.get() cannot hand it back from the identity map.

The pipeline keys on the "is auditable" capability (isinstance check), never
on concrete entity types. Sync and async commits both flush through the same
Session, so both paths stamp identically.

The actor comes from session.info[ACTOR_RESOLVER_KEY], placed there by
UnitOfWork. No resolver means "System".
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, sessionmaker

from core.actor import audit_actor_id
from persistence.entities import AuditableEntity, utcnow

logger = logging.getLogger("trainingcrm.persistence")

ACTOR_RESOLVER_KEY = "actor_resolver"
_SOFT_DELETED_KEY = "soft_deleted_in_flush"


class AuditableEntityInterceptor:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def install(self, target: sessionmaker | type[Session]) -> None:
        """Register on a session factory so every session it makes is audited."""
        event.listen(target, "before_flush", self.before_flush)
        event.listen(target, "after_flush_postexec", self.after_flush_postexec)

    def before_flush(self, session: Session, flush_context, instances) -> None:
        self.stamp(session)

    def after_flush_postexec(self, session: Session, flush_context) -> None:
        """Drop rows deleted in this flush from the identity map.

        session.get() answers from the identity map without emitting SQL, so
        the soft-delete filter never sees it. Expunged instances keep their
        loaded attributes; later reads go to the database and are filtered.
        """
        for obj in session.info.pop(_SOFT_DELETED_KEY, ()):
            if obj in session:
                session.expunge(obj)

    def stamp(self, session: Session) -> None:
        actor_id = audit_actor_id(session.info.get(ACTOR_RESOLVER_KEY))
        now = self._clock()
        soft_deleted: list[AuditableEntity] = []
        session.info[_SOFT_DELETED_KEY] = soft_deleted

        # Deletes first: re-adding them moves them into session.dirty, and
        # they must not also pick up an updated_* stamp in this flush.
        deleted = [obj for obj in session.deleted if isinstance(obj, AuditableEntity)]
        rewritten = {id(obj) for obj in deleted}
        for obj in deleted:
            # A row that is already soft-deleted keeps its original deleted_* stamps.
            if not _already_deleted(obj):
                obj.mark_deleted(actor_id, now)
                logger.debug("Soft-deleted %s %s by %s", type(obj).__name__, obj.id, actor_id)
            session.add(obj)
            soft_deleted.append(obj)

        for obj in session.new:
            if isinstance(obj, AuditableEntity) and id(obj) not in rewritten:
                obj.mark_created(actor_id, now)

        for obj in session.dirty:
            if not isinstance(obj, AuditableEntity) or id(obj) in rewritten:
                continue
            if not session.is_modified(obj, include_collections=False):
                continue
            if self._enforce_deletion_invariant(obj, actor_id, now):
                soft_deleted.append(obj)
            obj.mark_updated(actor_id, now)

    @staticmethod
    def _enforce_deletion_invariant(obj: AuditableEntity, actor_id: str, now: datetime) -> bool:
        """Keep is_deleted and deleted_* consistent when is_deleted is flipped directly.

        Returns True when the row ends this flush soft-deleted.
        """
        history = inspect(obj).attrs.is_deleted.history
        if not history.has_changes():
            return False
        if not obj.is_deleted:
            obj.clear_deletion()
            return False
        if obj.deleted_at is None:
            obj.mark_deleted(actor_id, now)
        return True


def _already_deleted(obj: AuditableEntity) -> bool:
    """True when the loaded row was soft-deleted and nothing in memory changed that."""
    history = inspect(obj).attrs.is_deleted.history
    return bool(obj.is_deleted) and not history.has_changes()
