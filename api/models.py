"""
API request and response models for TrainingCRM REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal representation. Route handlers map between the two.

Request models only bound input sizes. Semantic checks (email format,
password policy, confirmation match) belong to auth/validation.py so the
flows can report them inside the AuthResponse envelope.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuthResult

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=128)
    confirm_password: str = Field(min_length=1, max_length=128)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh and /logout."""

    refresh_token: str = Field(min_length=1, max_length=512)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AuthResponse(BaseModel):
    """Uniform envelope for register/login/refresh, success or not."""

    model_config = ConfigDict(frozen=True)

    success: bool
    token: Optional[str] = None
    refresh_token: Optional[str] = None
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(
            success=result.success,
            token=result.token,
            refresh_token=result.refresh_token,
            errors=list(result.errors),
        )


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    user_name: Optional[str]
    roles: list[str]


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
