"""
auth/flows.py -- Register, Login, Refresh and Logout command flows.

Every flow returns an AuthResult envelope instead of raising, so the
transport layer maps success=False to 400/401 uniformly. Expected failures
are built as core.result.Error values internally and flattened into the
envelope's errors list at the boundary.

Security:
  Login returns one generic error ("Invalid login credentials.") whether the
  email is unknown, the password is wrong or the credential is inactive.
  bcrypt runs in every branch (against DUMMY_HASH when the email is unknown)
  so response time does not reveal which case occurred.

  Refresh tokens rotate on every use. Presenting a token that was already
  rotated away revokes every live refresh token of that credential: either
  the client is confused or the token was stolen, and both deserve a fresh
  login.

Concurrency:
  Store calls and bcrypt are blocking, so they run via asyncio.to_thread.
  AuthService holds no per-request state and is shared across requests.

Layer rule: no imports from api/ or persistence/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from auth.models import AuthResult, CredentialRecord, RefreshTokenRecord
from auth.store import CredentialStore, DuplicateCredentialError
from auth.tokens import DUMMY_HASH, UNAUTHORIZED_MESSAGE, TokenService, hash_password, verify_password
from auth.validation import normalize_email, password_policy_errors
from core.result import Error

logger = logging.getLogger("trainingcrm.auth")

INVALID_CREDENTIALS = Error.unauthorized("Auth.InvalidCredentials", "Invalid login credentials.")
DUPLICATE_USER = Error.conflict("Auth.DuplicateUser", "User with this email already exists.")
PASSWORD_MISMATCH = Error.validation("Auth.PasswordMismatch", "Passwords do not match.")
INVALID_REFRESH_TOKEN = Error.unauthorized("Auth.InvalidToken", UNAUTHORIZED_MESSAGE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        tokens: TokenService,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._clock = clock

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    async def register(self, email: str, password: str, confirm_password: str) -> AuthResult:
        email_result = normalize_email(email)
        if email_result.is_failure:
            return _failed(email_result.error)
        if password != confirm_password:
            return _failed(PASSWORD_MISMATCH)
        policy = password_policy_errors(password)
        if policy:
            return _failed(*policy)

        normalized = email_result.value
        if await asyncio.to_thread(self._store.get_by_email, normalized) is not None:
            logger.info("Registration rejected: email already registered")
            return _failed(DUPLICATE_USER)

        digest = await asyncio.to_thread(hash_password, password)
        record = CredentialRecord(email=normalized, password_hash=digest)
        try:
            record.id = await asyncio.to_thread(self._store.create_credential, record)
        except DuplicateCredentialError:
            # Lost a race with a concurrent registration for the same email.
            return _failed(DUPLICATE_USER)

        logger.info("Registered credential %s", record.id)
        return await self._issue_pair(record)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> AuthResult:
        email_result = normalize_email(email)
        record = None
        if email_result.is_success:
            record = await asyncio.to_thread(self._store.get_by_email, email_result.value)

        if record is None:
            await asyncio.to_thread(verify_password, password, DUMMY_HASH)
            return _failed(INVALID_CREDENTIALS)
        if not await asyncio.to_thread(verify_password, password, record.password_hash):
            logger.info("Login failed for credential %s", record.id)
            return _failed(INVALID_CREDENTIALS)
        if not record.is_active:
            logger.info("Login refused for inactive credential %s", record.id)
            return _failed(INVALID_CREDENTIALS)

        return await self._issue_pair(record)

    # ------------------------------------------------------------------
    # Refresh / logout
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> AuthResult:
        """Exchange a live refresh token for a new access/refresh pair."""
        if not refresh_token:
            return _failed(INVALID_REFRESH_TOKEN)
        token_hash = self._tokens.hash_refresh_token(refresh_token)
        existing = await asyncio.to_thread(self._store.get_refresh_token_by_hash, token_hash)
        if existing is None:
            return _failed(INVALID_REFRESH_TOKEN)

        if existing.revoked_at is not None:
            if existing.replaced_by is not None:
                revoked = await asyncio.to_thread(self._store.revoke_all_refresh_tokens, existing.credential_id)
                logger.warning(
                    "Rotated refresh token reused for credential %s; revoked %d live token(s)",
                    existing.credential_id,
                    revoked,
                )
            return _failed(INVALID_REFRESH_TOKEN)
        if not existing.is_live(self._clock()):
            return _failed(INVALID_REFRESH_TOKEN)

        record = await asyncio.to_thread(self._store.get_by_id, existing.credential_id)
        if record is None or not record.is_active:
            await asyncio.to_thread(self._store.revoke_refresh_token, existing.id)
            return _failed(INVALID_REFRESH_TOKEN)

        raw = self._tokens.issue_refresh_token()
        replacement = RefreshTokenRecord(
            credential_id=record.id,
            token_hash=self._tokens.hash_refresh_token(raw),
            expires_at=self._tokens.refresh_token_expiry(),
        )
        if await asyncio.to_thread(self._store.rotate_refresh_token, existing.id, replacement) is None:
            # A concurrent exchange of the same token won.
            return _failed(INVALID_REFRESH_TOKEN)

        access = self._tokens.issue_access_token(record.email, record.roles, user_name=record.email)
        return AuthResult.ok(access, raw)

    async def logout(self, refresh_token: str) -> AuthResult:
        """Revoke a refresh token. Unknown or already-revoked tokens are not an error."""
        if refresh_token:
            token_hash = self._tokens.hash_refresh_token(refresh_token)
            existing = await asyncio.to_thread(self._store.get_refresh_token_by_hash, token_hash)
            if existing is not None:
                await asyncio.to_thread(self._store.revoke_refresh_token, existing.id)
        return AuthResult(success=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _issue_pair(self, record: CredentialRecord) -> AuthResult:
        roles = await asyncio.to_thread(self._store.get_roles, record.id)
        access = self._tokens.issue_access_token(record.email, roles, user_name=record.email)
        raw = self._tokens.issue_refresh_token()
        await asyncio.to_thread(
            self._store.add_refresh_token,
            RefreshTokenRecord(
                credential_id=record.id,
                token_hash=self._tokens.hash_refresh_token(raw),
                expires_at=self._tokens.refresh_token_expiry(),
            ),
        )
        return AuthResult.ok(access, raw)


def _failed(*errors: Error) -> AuthResult:
    return AuthResult.failed(*(e.message for e in errors))
