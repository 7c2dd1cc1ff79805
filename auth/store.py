"""
auth/store.py -- SQLAlchemy Core persistence layer for credentials.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_credential / _row_to_refresh_token
are the mappers. Flow and route code never touches SQL directly.

Tables:
  credentials       -- one row per local identity (email + bcrypt digest)
  credential_roles  -- (credential_id, role) pairs
  refresh_tokens    -- HMAC digests of issued refresh tokens and their state

Security:
  All queries use bound parameters. No f-strings in SQL.
  Raw refresh tokens never reach this module, only their HMAC digests.

This store is synchronous. The async auth flows call it through
asyncio.to_thread so lookups never block the event loop.

Layer rule: no imports from api/ or persistence/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    true,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import CredentialRecord, RefreshTokenRecord
from core.database import make_engine

_DEFAULT_DB_URL = "sqlite:///./trainingcrm.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credentials = Table(
    "credentials",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # normalised lower-case
    Column("password_hash", Text, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime),
    Column("is_active", Boolean, nullable=False, server_default=true()),
)

_credential_roles = Table(
    "credential_roles",
    _metadata,
    Column("credential_id", String(36), ForeignKey("credentials.id"), nullable=False),
    Column("role", String(50), nullable=False),
    PrimaryKeyConstraint("credential_id", "role"),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("credential_id", String(36), ForeignKey("credentials.id"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", DateTime, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("revoked_at", DateTime),
    Column("replaced_by", String(36)),
)


class DuplicateCredentialError(Exception):
    """Raised when the email is already registered (UNIQUE violation)."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime | None) -> datetime | None:
    """Store naive UTC -- SQLite has no timezone support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for CredentialRecord and RefreshTokenRecord entities.

    Usage:
        store = CredentialStore()
        store.create_credential(CredentialRecord(email="a@x.com", password_hash=hash_password("...")))
        record = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def create_credential(self, record: CredentialRecord) -> str:
        """Insert a credential plus its roles atomically and return its id.

        Raises DuplicateCredentialError if the email already exists. The flow
        checks first, but two concurrent registrations can both pass the check;
        the UNIQUE constraint settles the race.
        """
        credential_id = record.id or str(uuid.uuid4())
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _credentials.insert().values(
                        id=credential_id,
                        email=record.email,
                        password_hash=record.password_hash,
                        created_at=_to_db(_now()),
                        is_active=record.is_active,
                    )
                )
                for role in sorted(set(record.roles)):
                    conn.execute(_credential_roles.insert().values(credential_id=credential_id, role=role))
        except IntegrityError as exc:
            raise DuplicateCredentialError(record.email) from exc
        return credential_id

    def get_by_email(self, email: str) -> CredentialRecord | None:
        """Look up a credential by normalised email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.email == email)).fetchone()
            if row is None:
                return None
            return _row_to_credential(row, self._roles(conn, row.id))

    def get_by_id(self, credential_id: str) -> CredentialRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.id == credential_id)).fetchone()
            if row is None:
                return None
            return _row_to_credential(row, self._roles(conn, row.id))

    def get_roles(self, credential_id: str) -> list[str]:
        with self.engine.connect() as conn:
            return self._roles(conn, credential_id)

    def assign_role(self, credential_id: str, role: str) -> bool:
        """Grant a role. Returns False if it was already granted."""
        try:
            with self.engine.begin() as conn:
                conn.execute(_credential_roles.insert().values(credential_id=credential_id, role=role))
                conn.execute(
                    _credentials.update().where(_credentials.c.id == credential_id).values(updated_at=_to_db(_now()))
                )
        except IntegrityError:
            return False
        return True

    def set_active(self, credential_id: str, is_active: bool) -> bool:
        """Returns True if a row was updated, False if credential_id was not found."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _credentials.update()
                .where(_credentials.c.id == credential_id)
                .values(is_active=is_active, updated_at=_to_db(_now()))
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def add_refresh_token(self, record: RefreshTokenRecord) -> str:
        token_id = record.id or str(uuid.uuid4())
        with self.engine.begin() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    id=token_id,
                    credential_id=record.credential_id,
                    token_hash=record.token_hash,
                    expires_at=_to_db(record.expires_at),
                    created_at=_to_db(_now()),
                )
            )
        return token_id

    def get_refresh_token_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        """O(1) lookup via the UNIQUE index. Returns revoked/expired records too."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def rotate_refresh_token(self, old_id: str, replacement: RefreshTokenRecord) -> str | None:
        """Revoke old_id and insert its replacement in one transaction.

        The UPDATE only matches a record that is still unrevoked, so two
        concurrent exchanges of the same token cannot both succeed. Returns the
        new record id, or None if old_id was already revoked.
        """
        new_id = replacement.id or str(uuid.uuid4())
        now = _to_db(_now())
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == old_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=now, replaced_by=new_id)
            )
            if result.rowcount == 0:
                return None
            conn.execute(
                _refresh_tokens.insert().values(
                    id=new_id,
                    credential_id=replacement.credential_id,
                    token_hash=replacement.token_hash,
                    expires_at=_to_db(replacement.expires_at),
                    created_at=now,
                )
            )
        return new_id

    def revoke_refresh_token(self, token_id: str) -> bool:
        """Returns True if a live record was revoked."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == token_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_to_db(_now()))
            )
        return result.rowcount > 0

    def revoke_all_refresh_tokens(self, credential_id: str) -> int:
        """Revoke every live refresh token of a credential. Returns the count."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.credential_id == credential_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_to_db(_now()))
            )
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()

    @staticmethod
    def _roles(conn, credential_id: str) -> list[str]:
        rows = conn.execute(
            _credential_roles.select()
            .where(_credential_roles.c.credential_id == credential_id)
            .order_by(_credential_roles.c.role)
        ).fetchall()
        return [r.role for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row, roles: list[str]) -> CredentialRecord:
    return CredentialRecord(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        roles=roles,
        created_at=_from_db(row.created_at),
        updated_at=_from_db(row.updated_at),
        is_active=bool(row.is_active),
    )


def _row_to_refresh_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        credential_id=row.credential_id,
        token_hash=row.token_hash,
        expires_at=_from_db(row.expires_at),
        created_at=_from_db(row.created_at),
        revoked_at=_from_db(row.revoked_at),
        replaced_by=row.replaced_by,
    )
