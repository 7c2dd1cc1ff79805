"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

This is the transport adapter: the only place that reads the
Authorization header. Everything downstream sees an Actor.

  get_actor()            -- soft: Bearer token -> Actor, ANONYMOUS on any failure
  get_current_actor()    -- hard: raises HTTP 401 when not authenticated
  require_role(role)     -- factory: raises HTTP 403 when the role is missing
  get_actor_resolver()   -- per-request RequestActorResolver
  get_unit_of_work()     -- per-request UnitOfWork bound to that resolver

Per-request objects live only in the dependency graph of one request; no
module-level "current user" exists.

Layer rule: this module may import from fastapi (Depends/HTTPException/Request)
and from persistence/ for the UnitOfWork type, because it is the seam where
the transport hands the actor to the persistence core.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator

from fastapi import Depends, HTTPException, Request

from auth.tokens import TokenService
from core.actor import ANONYMOUS, Actor, RequestActorResolver
from persistence.unit_of_work import UnitOfWork


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header[:7].lower() == "bearer ":
        token = auth_header[7:].strip()
        return token or None
    return None


def get_actor(request: Request) -> Actor:
    """Decode the Bearer token if present. Never raises.

    Any invalid or expired token is treated as anonymous; routes that need
    a real identity depend on get_current_actor() instead.
    """
    token = _bearer_token(request)
    if token is None:
        return ANONYMOUS
    token_service: TokenService = request.app.state.token_service
    result = token_service.validate_and_decode(token)
    return result.value if result.is_success else ANONYMOUS


def get_current_actor(actor: Actor = Depends(get_actor)) -> Actor:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(actor: Actor = Depends(get_current_actor)): ...
    """
    if not actor.is_authenticated:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


def require_role(role: str) -> Callable[..., Actor]:
    """Build a dependency that requires the given role (401 if anonymous, 403 if missing).

        @router.delete("/courses/{id}")
        async def route(actor: Actor = Depends(require_role("Admin"))): ...
    """

    def _require_role(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.has_role(role):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"{role} access required."},
            )
        return actor

    return _require_role


def get_actor_resolver(actor: Actor = Depends(get_actor)) -> RequestActorResolver:
    return RequestActorResolver(actor)


def get_unit_of_work(
    request: Request,
    resolver: RequestActorResolver = Depends(get_actor_resolver),
) -> Iterator[UnitOfWork]:
    """Yield a UnitOfWork for this request and close it when the response is done.

    Anything not committed by the route is rolled back on close.
    """
    uow = UnitOfWork(request.app.state.session_factory, resolver)
    try:
        yield uow
    finally:
        uow.close()
