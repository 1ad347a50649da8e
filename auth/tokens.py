"""
auth/tokens.py -- Stateful bearer tokens: generation, lookup, revocation.

Security design decisions:
  Plaintext: secrets.token_bytes(16) base32-encoded without padding gives a
       26-character token with 128 bits of entropy. It is handed back to the
       caller exactly once (inside the Token returned by generate()) and
       never persisted or logged.

  Hash: HMAC-SHA256(SECRET_KEY, plaintext) as hex. The hash is deterministic,
       so lookup is an O(1) primary-key hit, and an attacker holding a DB dump
       cannot replay tokens without also knowing SECRET_KEY. bcrypt's
       slowness is unnecessary for high-entropy random values.

  Failure collapsing: authenticate() raises InvalidCredentialsError for a
       malformed token, an unknown hash, a wrong scope and an expired token
       alike. The store query folds all three row conditions into one WHERE
       clause, so the caller cannot tell them apart either.

  Password login: authenticate_password() always runs bcrypt, against the
       hasher's dummy hash when the email is unknown, so response time does
       not reveal whether an account exists.

Layer rule: no imports from api/ or movies/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from auth.models import TOKEN_SCOPES, Token, User
from auth.passwords import PasswordHasher
from auth.store import TokenStore, UserStore
from core.errors import InvalidCredentialsError, ServerError

logger = logging.getLogger("marquee.auth")

TOKEN_LENGTH = 26


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_plaintext() -> str:
    """Return a fresh 26-character base32 token (128 bits of entropy)."""
    return base64.b32encode(secrets.token_bytes(16)).decode("ascii").rstrip("=")


def is_well_formed(plaintext: str) -> bool:
    return len(plaintext) == TOKEN_LENGTH


class TokenService:
    """Issues and checks scoped bearer tokens on top of the user and token stores.

    Holds no mutable state of its own; everything lives in the stores.
    clock is injectable so tests can move time past a token's expiry.
    """

    def __init__(
        self,
        users: UserStore,
        tokens: TokenStore,
        secret_key: str,
        hasher: PasswordHasher,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self.hasher = hasher
        self._secret = secret_key.encode("utf-8")
        self._clock = clock

    def hash_token(self, plaintext: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, plaintext) as a hex string."""
        return hmac.new(self._secret, plaintext.encode("utf-8"), hashlib.sha256).hexdigest()

    def generate(self, user_id: int, ttl: timedelta, scope: str) -> Token:
        """Create, persist and return a token. The returned plaintext is the only copy.

        Raises ValueError for a non-positive ttl or an unknown scope (caller
        bugs), ServerError if the store write fails.
        """
        if ttl <= timedelta(0):
            raise ValueError("token ttl must be positive")
        if scope not in TOKEN_SCOPES:
            raise ValueError(f"unknown token scope: {scope!r}")

        plaintext = generate_plaintext()
        token = Token(
            hash=self.hash_token(plaintext),
            user_id=user_id,
            expiry=self._clock() + ttl,
            scope=scope,
            plaintext=plaintext,
        )
        try:
            self.tokens.insert(token)
        except SQLAlchemyError as exc:
            raise ServerError() from exc
        logger.info("Issued %s token for user %s", scope, user_id)
        return token

    def authenticate(self, plaintext: str, scope: str) -> User:
        """Resolve a plaintext token to its owning user.

        Raises InvalidCredentialsError whenever the token cannot be used for
        this scope right now, ServerError if the store is unavailable.
        """
        if not is_well_formed(plaintext):
            raise InvalidCredentialsError()
        try:
            user = self.users.get_for_token(self.hash_token(plaintext), scope, self._clock())
        except SQLAlchemyError as exc:
            raise ServerError() from exc
        if user is None:
            raise InvalidCredentialsError()
        return user

    def revoke_all(self, user_id: int, scope: str) -> int:
        """Delete every token of this scope for the user. Idempotent."""
        try:
            removed = self.tokens.delete_all_for_user(user_id, scope)
        except SQLAlchemyError as exc:
            raise ServerError() from exc
        if removed:
            logger.info("Revoked %d %s token(s) for user %s", removed, scope, user_id)
        return removed

    def authenticate_password(self, email: str, password: str) -> User:
        """Check an email/password pair with timing equalization.

        Unknown email and wrong password both raise InvalidCredentialsError
        after the same amount of bcrypt work.
        """
        try:
            user = self.users.get_by_email(email)
        except SQLAlchemyError as exc:
            raise ServerError() from exc
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt
            self.hasher.verify_dummy(password)
            raise InvalidCredentialsError()
        if not self.hasher.verify(password, user.password_hash):
            raise InvalidCredentialsError()
        return user

    def purge_expired(self) -> int:
        try:
            return self.tokens.delete_expired(self._clock())
        except SQLAlchemyError as exc:
            raise ServerError() from exc
