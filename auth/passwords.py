"""
auth/passwords.py -- One-way password hashing (bcrypt, direct usage).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

The cost factor is fixed per PasswordHasher instance. Production builds one
from Settings.bcrypt_rounds at startup; tests build one with rounds=4 so the
suite does not spend seconds per hash. Call sites only ever see hash() and
verify(), never the cost.
"""

from __future__ import annotations

import bcrypt

# bcrypt silently ignores input past 72 bytes. The validator rejects longer
# passwords before they get here.
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Self-salted bcrypt hashing with a constructor-fixed cost."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization: verify_dummy() checks against this so an
        # unknown email costs the same bcrypt work as a wrong password.
        self._dummy_hash = self.hash("marquee_timing_dummy")

    def hash(self, password: str) -> str:
        """Return a bcrypt hash of the given plaintext password."""
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        A malformed or truncated hash is a non-match, never an error.
        """
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError, AttributeError):
            return False

    def verify_dummy(self, password: str) -> None:
        self.verify(password, self._dummy_hash)
