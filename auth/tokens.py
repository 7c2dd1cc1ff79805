"""
auth/tokens.py -- JWT access tokens, opaque refresh tokens, password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (actor id), name, iss, aud, roles, iat, exp and jti. Validation
       checks signature, issuer, audience and expiry before any claim is
       trusted, and collapses every failure into an Unauthorized Result --
       callers never see which check failed or any cryptographic detail.

  Refresh tokens: secrets.token_urlsafe(48) gives 384 bits of entropy and no
       embedded claims. The store keeps HMAC-SHA256(SECRET_KEY, raw_token) so
       lookup is O(1) and a leaked database does not yield usable tokens.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in the login flow so response time does
       not reveal whether an email exists.

  Signing configuration: TokenService receives a frozen JwtSettings built once
       at startup. Nothing in this module reads the environment or keeps
       mutable key state.

Layer rule: no imports from api/ or persistence/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.actor import Actor
from core.config import JwtSettings
from core.result import Error, Result

logger = logging.getLogger("trainingcrm.auth")

_ALGORITHM = "HS256"
_REFRESH_TOKEN_BYTES = 48

UNAUTHORIZED_MESSAGE = "Unauthorized."
INVALID_TOKEN = Error.unauthorized("Auth.InvalidToken", UNAUTHORIZED_MESSAGE)
EXPIRED_TOKEN = Error.unauthorized("Auth.TokenExpired", UNAUTHORIZED_MESSAGE)

# ---------------------------------------------------------------------------
# Password hashing (bcrypt)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only considers the first 72 bytes. The API layer caps password
    length at 128 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed digest in the store -- treat as a mismatch.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than later ones. Verify against it whenever the email is unknown.
DUMMY_HASH: str = hash_password("trainingcrm_timing_dummy")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Issues and validates credentials. Safe for concurrent use: all state is read-only."""

    def __init__(self, settings: JwtSettings, clock: Callable[[], datetime] = _utcnow) -> None:
        self._settings = settings
        self._clock = clock

    @property
    def expiry_seconds(self) -> int:
        return self._settings.expiry_minutes * 60

    def issue_access_token(self, actor_id: str, roles: Iterable[str], user_name: str | None = None) -> str:
        now = self._clock()
        payload = {
            "sub": actor_id,
            "name": user_name or actor_id,
            "iss": self._settings.issuer,
            "aud": self._settings.audience,
            "roles": sorted(set(roles)),
            "iat": now,
            "exp": now + timedelta(minutes=self._settings.expiry_minutes),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._settings.secret, algorithm=_ALGORITHM)

    def issue_refresh_token(self) -> str:
        return secrets.token_urlsafe(_REFRESH_TOKEN_BYTES)

    def refresh_token_expiry(self) -> datetime:
        return self._clock() + timedelta(days=self._settings.refresh_expiry_days)

    def hash_refresh_token(self, raw_token: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
        return hmac.new(
            self._settings.secret.encode(),
            raw_token.encode(),
            hashlib.sha256,
        ).hexdigest()

    def validate_and_decode(self, token: str) -> Result[Actor]:
        """Verify signature, issuer, audience and expiry, then build the Actor.

        Expiry is checked against the wall clock by python-jose; the injectable
        clock only affects issuing.
        """
        try:
            claims = jwt.decode(
                token,
                self._settings.secret,
                algorithms=[_ALGORITHM],
                audience=self._settings.audience,
                issuer=self._settings.issuer,
                options={
                    "require_exp": True,
                    "require_sub": True,
                    "require_iss": True,
                    "require_aud": True,
                },
            )
        except ExpiredSignatureError:
            return Result.failure(EXPIRED_TOKEN)
        except JWTError:
            logger.debug("Rejected access token")
            return Result.failure(INVALID_TOKEN)

        roles = claims.get("roles", [])
        if not isinstance(roles, list) or not all(isinstance(r, str) for r in roles):
            return Result.failure(INVALID_TOKEN)
        return Result.success(
            Actor(
                user_id=claims["sub"],
                user_name=claims.get("name") or claims["sub"],
                is_authenticated=True,
                roles=frozenset(roles),
            )
        )
