"""
persistence/database.py -- Session-factory construction.

make_sessionmaker() is the single place where the audit interceptor and the
soft-delete filter are attached. Every session produced by the factory is
audited; there is no unaudited factory to reach for by accident.

Usage:
    engine = make_engine("sqlite:///./trainingcrm.db")
    create_schema(engine)
    factory = make_sessionmaker(engine)
    uow = UnitOfWork(factory, RequestActorResolver(actor))
"""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from persistence import soft_delete
from persistence.entities import Base
from persistence.interceptor import AuditableEntityInterceptor


def make_sessionmaker(engine: Engine, interceptor: AuditableEntityInterceptor | None = None) -> sessionmaker:
    # expire_on_commit=False keeps entities readable after the unit of work
    # commits, e.g. when a route serializes what it just created.
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    (interceptor or AuditableEntityInterceptor()).install(factory)
    soft_delete.install(factory)
    return factory


def create_schema(engine: Engine) -> None:
    """Create tables for every mapped entity imported so far."""
    Base.metadata.create_all(engine)
