"""
auth/validation.py -- Domain rules for registration, login and token input.

Each function feeds a core.validator.Validator so the route can report every
broken rule in one 422 response.
"""

from __future__ import annotations

from auth.passwords import MAX_PASSWORD_BYTES
from auth.tokens import TOKEN_LENGTH
from core.validator import EMAIL_RE, Validator, matches

MIN_PASSWORD_BYTES = 8


def validate_email(v: Validator, email: str) -> None:
    v.check(email != "", "email", "must be provided")
    v.check(matches(email, EMAIL_RE), "email", "must be a valid email address")


def validate_password_plaintext(v: Validator, password: str) -> None:
    size = len(password.encode("utf-8"))
    v.check(password != "", "password", "must be provided")
    v.check(size >= MIN_PASSWORD_BYTES, "password", f"must be at least {MIN_PASSWORD_BYTES} bytes long")
    v.check(size <= MAX_PASSWORD_BYTES, "password", f"must not be more than {MAX_PASSWORD_BYTES} bytes long")


def validate_registration(v: Validator, name: str, email: str, password: str) -> None:
    v.check(name != "", "name", "must be provided")
    v.check(len(name.encode("utf-8")) <= 500, "name", "must not be more than 500 bytes long")
    validate_email(v, email)
    validate_password_plaintext(v, password)


def validate_token_plaintext(v: Validator, token: str) -> None:
    v.check(token != "", "token", "must be provided")
    v.check(len(token) == TOKEN_LENGTH, "token", f"must be {TOKEN_LENGTH} bytes long")
