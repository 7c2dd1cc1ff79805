"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and flows do
the work.

Layer rule: no imports from api/ or persistence/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class CredentialRecord:
    """A local identity: email + bcrypt digest + roles.

    email is stored normalised (trimmed, lower-case) and doubles as the actor
    id written into tokens and audit columns.

    id is None before the record is written to the database.
    """

    email: str
    password_hash: str
    roles: list[str] = field(default_factory=list)
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    is_active: bool = True


@dataclass
class RefreshTokenRecord:
    """Server-side state for one opaque refresh token.

    Security design:
    - token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token is
      returned to the client once and never persisted.
    - A record is usable while revoked_at is None and expires_at is in the
      future. Rotation sets revoked_at and replaced_by on the old record.
    """

    credential_id: str
    token_hash: str
    expires_at: datetime
    id: str | None = None
    created_at: datetime | None = None
    revoked_at: datetime | None = None
    replaced_by: str | None = None

    def is_live(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now


@dataclass
class AuthResult:
    """Uniform envelope returned by every authentication flow.

    The transport layer maps success=False to 400/401 without inspecting
    which check failed.
    """

    success: bool
    token: str | None = None
    refresh_token: str | None = None
    errors: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, token: str, refresh_token: str | None = None) -> AuthResult:
        return cls(success=True, token=token, refresh_token=refresh_token)

    @classmethod
    def failed(cls, *errors: str) -> AuthResult:
        return cls(success=False, errors=list(errors))
