"""
core/validator.py -- Field-error accumulator for domain validation.

Pydantic request models in api/models.py only check that a body is
well-formed JSON of the right shape (a failure there is a 400). Domain rules
-- lengths, ranges, formats, uniqueness -- are checked here so every broken
rule is reported together as a single 422.

Usage:
    v = Validator()
    v.check(name != "", "name", "must be provided")
    v.check(len(name.encode()) <= 500, "name", "must not be more than 500 bytes long")
    v.raise_if_invalid()
"""

from __future__ import annotations

import re
from collections.abc import Hashable, Iterable

from core.errors import ValidationError

EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


class Validator:
    """Collects one error message per field; the first message for a field wins."""

    def __init__(self) -> None:
        self.errors: dict[str, str] = {}

    def valid(self) -> bool:
        return not self.errors

    def add_error(self, key: str, message: str) -> None:
        self.errors.setdefault(key, message)

    def check(self, ok: bool, key: str, message: str) -> None:
        if not ok:
            self.add_error(key, message)

    def raise_if_invalid(self) -> None:
        if self.errors:
            raise ValidationError(self.errors)


def matches(value: str, pattern: re.Pattern) -> bool:
    return pattern.match(value) is not None


def permitted_value(value, *permitted) -> bool:
    return value in permitted


def unique(values: Iterable[Hashable]) -> bool:
    values = list(values)
    return len(set(values)) == len(values)
