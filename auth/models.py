"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in movies/models.py -- dataclasses own domain shape; stores, the token
service, and routes do the work.

Layer rule: no imports from api/ or movies/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

SCOPE_ACTIVATION = "activation"
SCOPE_AUTHENTICATION = "authentication"
TOKEN_SCOPES = (SCOPE_ACTIVATION, SCOPE_AUTHENTICATION)

PERMISSION_MOVIES_READ = "movies:read"
PERMISSION_MOVIES_WRITE = "movies:write"
PERMISSION_CODES = (PERMISSION_MOVIES_READ, PERMISSION_MOVIES_WRITE)


@dataclass
class User:
    """A registered account.

    password_hash is the bcrypt output and must never reach a response body;
    api/models.UserResponse deliberately has no field for it.

    version is bumped by the store on every successful update and is the
    optimistic-concurrency guard: an update against a stale version fails
    with EditConflictError.

    id is None before the record is written to the database.
    """

    name: str
    email: str
    password_hash: str = field(default="", repr=False)
    activated: bool = False
    id: int | None = None
    created_at: str = ""  # ISO 8601, set by store on insert
    version: int = 1

    @property
    def is_anonymous(self) -> bool:
        return self is ANONYMOUS_USER


# Attached to requests that carry no Authorization header. Compared by
# identity, so a real user can never be mistaken for it.
ANONYMOUS_USER = User(name="", email="")


@dataclass
class Token:
    """A bearer credential.

    plaintext is only populated on the instance returned by
    TokenService.generate(). Tokens loaded from the store carry the hash only
    -- the plaintext is unrecoverable once the response has been sent.
    """

    hash: str
    user_id: int
    expiry: datetime
    scope: str  # "activation" | "authentication"
    plaintext: str = field(default="", repr=False)
