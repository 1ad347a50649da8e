"""
api/routes/v1/users.py -- Registration and activation endpoints.

Routes:
  POST /v1/users             -- register; 201 + activation token mailed
  PUT  /v1/users/activated   -- redeem an activation token; 200

Both are public. Activation tokens are single-use: a successful activation
revokes every activation token the user holds, so resubmitting the same token
is a 422.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, BackgroundTasks, Request, Response

from api.encoder import respond
from api.models import UserActivate, UserCreate, UserResponse
from auth.models import PERMISSION_MOVIES_READ, SCOPE_ACTIVATION, User
from auth.validation import validate_registration, validate_token_plaintext
from core.config import get_settings
from core.errors import DuplicateEmailError, InvalidCredentialsError, ValidationError
from core.validator import Validator

# Auth policy:
# - POST /v1/users:            public -- registration
# - PUT  /v1/users/activated:  public -- the activation token is the credential
router = APIRouter()


@router.post("/users", status_code=201)
def register_user(request: Request, body: UserCreate, background_tasks: BackgroundTasks) -> Response:
    """Create an inactive account, grant movies:read, and mail an activation token.

    The plaintext activation token only ever leaves the server in that mail.

    The user insert, the grant and the token write are separate store calls.
    If the token write fails the account already exists and a repeat
    registration is a duplicate-email 422; the client recovers by asking
    POST /v1/tokens/activation for a fresh token.
    """
    state = request.app.state

    v = Validator()
    validate_registration(v, body.name, body.email, body.password)
    v.raise_if_invalid()

    user = User(
        name=body.name,
        email=body.email,
        password_hash=state.hasher.hash(body.password),
        activated=False,
    )
    try:
        state.user_store.insert(user)
    except DuplicateEmailError as exc:
        raise ValidationError({"email": "a user with this email address already exists"}) from exc

    state.permission_store.add_for_user(user.id, PERMISSION_MOVIES_READ)

    ttl = timedelta(seconds=get_settings().activation_token_ttl_seconds)
    token = state.token_service.generate(user.id, ttl, SCOPE_ACTIVATION)
    background_tasks.add_task(state.mailer.send_activation, user, token)

    return respond(request, {"user": UserResponse.from_user(user)}, status_code=201)


@router.put("/users/activated")
def activate_user(request: Request, body: UserActivate) -> Response:
    """Mark the token's owner as activated and revoke all of their activation tokens.

    Unknown, expired, already-used and wrong-scope tokens all produce the
    same 422 so the endpoint cannot be used to probe token state.
    """
    state = request.app.state

    v = Validator()
    validate_token_plaintext(v, body.token)
    v.raise_if_invalid()

    try:
        user = state.token_service.authenticate(body.token, SCOPE_ACTIVATION)
    except InvalidCredentialsError as exc:
        raise ValidationError({"token": "invalid or expired activation token"}) from exc

    user.activated = True
    # EditConflictError (409) propagates: a concurrent update won the race.
    state.user_store.update(user)

    state.token_service.revoke_all(user.id, SCOPE_ACTIVATION)

    return respond(request, {"user": UserResponse.from_user(user)})
