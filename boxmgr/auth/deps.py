from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from .identity import Identity
from .session import Session, SessionResolver

UNAUTHORIZED_MESSAGE = "Unauthorized"
FORBIDDEN_MESSAGE = "Forbidden. Admin access required."


def _unauthorized() -> HTTPException:
    # One message for missing, malformed, forged and expired tokens alike.
    return HTTPException(status_code=401, detail=UNAUTHORIZED_MESSAGE, headers={"WWW-Authenticate": "Bearer"})


def get_resolver(request: Request) -> SessionResolver:
    resolver = getattr(request.app.state, "resolver", None)
    if resolver is None:
        raise HTTPException(status_code=500, detail="server_config_missing")
    return resolver


def get_session(request: Request, resolver: SessionResolver = Depends(get_resolver)) -> Session:
    """Resolve the session without enforcing anything (anonymous is a valid answer)."""
    return resolver.resolve(request.cookies, request.headers.get("Authorization"))


def get_current_user(request: Request, session: Session = Depends(get_session)) -> Identity:
    """Require an authenticated session (401 otherwise)."""
    if session.identity is None:
        raise _unauthorized()
    request.state.user = session.identity
    return session.identity


def require_admin(user: Identity = Depends(get_current_user)) -> Identity:
    """Require an authenticated admin (401 when anonymous, 403 when not admin)."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail=FORBIDDEN_MESSAGE)
    return user
