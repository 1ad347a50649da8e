"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and permissions.

authenticate() runs on every request (registered app-wide in api/main.py).
It reads the Authorization header and stores the resolved user on
request.state.user -- ANONYMOUS_USER when no header was sent. request.state
is per-request, so the user never leaks between concurrent requests.

The require_* helpers are per-route guards layered on top:
  require_authenticated_user  -- 401 for anonymous
  require_activated_user      -- 401 for anonymous, 403 if not activated
  require_permission(code)    -- activated, plus 403 if the code is not granted

Permissions are read from the PermissionStore on every request (no caching)
so a revoked grant takes effect on the very next call.

Layer rule: no imports from api/ or movies/. auth/dependencies.py may import
from fastapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from auth.models import ANONYMOUS_USER, SCOPE_AUTHENTICATION, User
from core.errors import (
    AuthenticationRequiredError,
    AuthorizationError,
    InvalidAuthenticationTokenError,
    InvalidCredentialsError,
    ServerError,
)


def authenticate(request: Request) -> User:
    """Resolve the bearer token (if any) and attach the user to request.state.

    No Authorization header  -> anonymous user, not an error.
    Malformed header         -> 401 invalid_token.
    Unknown/expired/wrong-scope token -> 401 invalid_token.
    """
    auth_header = request.headers.get("Authorization")
    if auth_header is None:
        request.state.user = ANONYMOUS_USER
        return ANONYMOUS_USER

    scheme, _, token = auth_header.partition(" ")
    token = token.strip()
    if scheme != "Bearer" or not token:
        raise InvalidAuthenticationTokenError()

    token_service = request.app.state.token_service
    try:
        user = token_service.authenticate(token, SCOPE_AUTHENTICATION)
    except InvalidCredentialsError as exc:
        raise InvalidAuthenticationTokenError() from exc

    request.state.user = user
    return user


def require_authenticated_user(user: User = Depends(authenticate)) -> User:
    if user.is_anonymous:
        raise AuthenticationRequiredError()
    return user


def require_activated_user(user: User = Depends(require_authenticated_user)) -> User:
    """Require a logged-in, activated account. 401 if anonymous, 403 if inactive."""
    if not user.activated:
        raise AuthorizationError("your user account must be activated to access this resource")
    return user


def require_permission(code: str) -> Callable[..., User]:
    """Build a dependency that requires an activated user holding permission `code`.

    FastAPI caches authenticate() per request, so chaining these guards on a
    route that already runs the app-wide authenticate() costs no extra lookup.

    Use as a FastAPI dependency:
        @router.post("/movies", dependencies=[Depends(require_permission("movies:write"))])
    """

    def dependency(request: Request, user: User = Depends(require_activated_user)) -> User:
        try:
            codes = request.app.state.permission_store.get_all_for_user(user.id)
        except SQLAlchemyError as exc:
            raise ServerError() from exc
        if code not in codes:
            raise AuthorizationError(
                "your user account doesn't have the necessary permissions to access this resource"
            )
        return user

    dependency.__name__ = f"require_permission_{code.replace(':', '_')}"
    return dependency
