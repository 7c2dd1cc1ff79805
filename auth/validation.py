"""
auth/validation.py -- Input checks that run before any store access.

normalize_email() trims, lower-cases and format-checks an address, returning
a Result so the flows can report the problem without raising. The normalised
form is what gets stored and what becomes the actor id.

password_policy_errors() returns every policy violation at once, so the
client can fix them in one round trip.

Layer rule: no imports from api/ or persistence/.
"""

from __future__ import annotations

import re

from core.result import Error, Result

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", re.IGNORECASE)
_EMAIL_MAX_LENGTH = 255

PASSWORD_MIN_LENGTH = 8
# bcrypt only hashes the first 72 bytes and rejects longer input outright.
PASSWORD_MAX_BYTES = 72


def normalize_email(raw: str | None) -> Result[str]:
    if raw is None or not raw.strip():
        return Result.failure(Error.validation("Email.Empty", "Email cannot be empty."))
    email = raw.strip().lower()
    if len(email) > _EMAIL_MAX_LENGTH:
        return Result.failure(
            Error.validation("Email.TooLong", f"Email cannot be longer than {_EMAIL_MAX_LENGTH} characters.")
        )
    if not _EMAIL_RE.match(email):
        return Result.failure(Error.validation("Email.InvalidFormat", "Email format is invalid."))
    return Result.success(email)


def password_policy_errors(password: str) -> list[Error]:
    errors: list[Error] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(
            Error.validation(
                "Password.TooShort", f"Passwords must be at least {PASSWORD_MIN_LENGTH} characters."
            )
        )
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        errors.append(
            Error.validation("Password.TooLong", f"Passwords cannot be longer than {PASSWORD_MAX_BYTES} bytes.")
        )
    if not any(c.isdigit() for c in password):
        errors.append(Error.validation("Password.RequiresDigit", "Passwords must have at least one digit ('0'-'9')."))
    if not any(c.islower() for c in password):
        errors.append(
            Error.validation("Password.RequiresLower", "Passwords must have at least one lowercase ('a'-'z').")
        )
    if not any(c.isupper() for c in password):
        errors.append(
            Error.validation("Password.RequiresUpper", "Passwords must have at least one uppercase ('A'-'Z').")
        )
    if all(c.isalnum() for c in password):
        errors.append(
            Error.validation(
                "Password.RequiresNonAlphanumeric", "Passwords must have at least one non alphanumeric character."
            )
        )
    return errors
