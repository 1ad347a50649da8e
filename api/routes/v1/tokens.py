"""
api/routes/v1/tokens.py -- Token issuance and revocation endpoints.

Routes:
  POST   /v1/tokens/authentication  -- email/password login; 201 + bearer token
  DELETE /v1/tokens/authentication  -- revoke all of the caller's bearer tokens
  POST   /v1/tokens/activation      -- mail a fresh activation token; 202

Security:
  POST /tokens/authentication is rate-limited per IP (Settings.login_rate_limit)
      on top of the global token bucket -- brute-force mitigation.
  TokenService.authenticate_password() provides timing equalization -- use it,
      never inline get_by_email() + verify().
  Unknown email and wrong password are the same 401 (no account enumeration).
  Cache-Control: no-store on every response that carries a plaintext token.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from api.encoder import respond
from api.limiter import limiter
from api.models import ActivationTokenCreate, TokenCreate, TokenResponse
from auth.dependencies import require_authenticated_user
from auth.models import SCOPE_ACTIVATION, SCOPE_AUTHENTICATION, User
from auth.validation import validate_email, validate_password_plaintext
from core.config import get_settings
from core.errors import ValidationError
from core.validator import Validator

# Only the slowapi decorator needs settings at import; handlers read get_settings() per request.
_settings = get_settings()

# Auth policy:
# - POST   /v1/tokens/authentication:  public -- the login endpoint must be unauthenticated
# - DELETE /v1/tokens/authentication:  requires auth (require_authenticated_user)
# - POST   /v1/tokens/activation:      public -- resend for users who lost their mail
router = APIRouter()


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/tokens/authentication", status_code=201)
def create_authentication_token(request: Request, body: TokenCreate) -> Response:
    """Exchange email + password for a bearer token valid for authentication_token_ttl_seconds."""
    state = request.app.state

    v = Validator()
    validate_email(v, body.email)
    validate_password_plaintext(v, body.password)
    v.raise_if_invalid()

    # InvalidCredentialsError (401) propagates for unknown email or wrong password.
    user = state.token_service.authenticate_password(body.email, body.password)

    ttl = timedelta(seconds=get_settings().authentication_token_ttl_seconds)
    token = state.token_service.generate(user.id, ttl, SCOPE_AUTHENTICATION)

    return respond(
        request,
        {"authentication_token": TokenResponse.from_token(token)},
        status_code=201,
        headers={"Cache-Control": "no-store"},
    )


@router.delete("/tokens/authentication")
def revoke_authentication_tokens(request: Request, user: User = Depends(require_authenticated_user)) -> Response:
    """Log out everywhere: delete every authentication token the caller holds."""
    request.app.state.token_service.revoke_all(user.id, SCOPE_AUTHENTICATION)
    return respond(request, {"message": "authentication tokens revoked"})


@router.post("/tokens/activation", status_code=202)
def create_activation_token(
    request: Request, body: ActivationTokenCreate, background_tasks: BackgroundTasks
) -> Response:
    """Issue and mail a new activation token for a registered, not-yet-activated account."""
    state = request.app.state

    v = Validator()
    validate_email(v, body.email)
    v.raise_if_invalid()

    user = state.user_store.get_by_email(body.email)
    if user is None:
        raise ValidationError({"email": "no matching email address found"})
    if user.activated:
        raise ValidationError({"email": "user has already been activated"})

    ttl = timedelta(seconds=get_settings().activation_token_ttl_seconds)
    token = state.token_service.generate(user.id, ttl, SCOPE_ACTIVATION)
    background_tasks.add_task(state.mailer.send_activation, user, token)

    return respond(
        request,
        {"message": "an email will be sent to you containing activation instructions"},
        status_code=202,
    )
