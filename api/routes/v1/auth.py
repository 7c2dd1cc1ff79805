"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register  -- create a credential; 200 or 400 AuthResponse
  POST /api/v1/auth/login     -- password login; 200 or 401 AuthResponse
  POST /api/v1/auth/refresh   -- rotate a refresh token; 200 or 401 AuthResponse
  POST /api/v1/auth/logout    -- revoke a refresh token; always 200
  GET  /api/v1/auth/me        -- current actor (requires a valid Bearer token)

The routes are thin: they hand the body to AuthService and translate the
AuthResponse envelope into a status code. All checks live in auth/flows.py.

Security:
  register and login are rate-limited per client IP (LOGIN_RATE_LIMIT).
  Cache-Control: no-store on every response that may carry tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import AuthResponse, LoginRequest, MeResponse, RefreshRequest, RegisterRequest
from auth.dependencies import get_current_actor
from auth.flows import AuthService
from auth.models import AuthResult
from core.actor import Actor
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/refresh:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout:   public -- revoking a token needs no prior auth
# - GET  /api/v1/auth/me:       requires auth (get_current_actor)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _envelope(result: AuthResult, failure_status: int) -> JSONResponse:
    resp = JSONResponse(
        status_code=200 if result.success else failure_status,
        content=AuthResponse.from_result(result).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(_login_rate_limit)
@router.post("/auth/register", response_model=AuthResponse)
async def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a credential and sign the new actor in. Failures return 400."""
    result = await _auth_service(request).register(body.email, body.password, body.confirm_password)
    return _envelope(result, failure_status=400)


@limiter.limit(_login_rate_limit)
@router.post("/auth/login", response_model=AuthResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 body.
    """
    result = await _auth_service(request).login(body.email, body.password)
    return _envelope(result, failure_status=401)


@router.post("/auth/refresh", response_model=AuthResponse)
async def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new token pair. The old refresh token stops working."""
    result = await _auth_service(request).refresh(body.refresh_token)
    return _envelope(result, failure_status=401)


@router.post("/auth/logout")
async def logout(request: Request, body: RefreshRequest) -> JSONResponse:
    """Revoke the presented refresh token. Access tokens expire on their own."""
    await _auth_service(request).logout(body.refresh_token)
    return JSONResponse(content={"message": "Logged out."})


@router.get("/auth/me", response_model=MeResponse)
async def me(actor: Actor = Depends(get_current_actor)) -> MeResponse:
    """Return identity information decoded from the caller's access token."""
    return MeResponse(
        user_id=actor.user_id or "",
        user_name=actor.user_name,
        roles=sorted(actor.roles),
    )
