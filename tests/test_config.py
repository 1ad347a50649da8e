"""Unit tests for core/config.py -- Settings validation.

Covers:
- DEBUG=true auto-generates a SECRET_KEY
- production mode without SECRET_KEY refuses to start
- short SECRET_KEY rejected in both modes
- limiter and bcrypt parameter bounds
- list-valued CORS origins parsed from JSON
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

GOOD_KEY = "k" * 32


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "DEBUG",
        "ENV",
        "PORT",
        "SECRET_KEY",
        "LIMITER_RPS",
        "LIMITER_BURST",
        "LIMITER_ENABLED",
        "BCRYPT_ROUNDS",
        "CORS_TRUSTED_ORIGINS",
    ):
        monkeypatch.delenv(name, raising=False)


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


def test_debug_generates_secret_key():
    s = _settings(debug=True)
    assert len(s.secret_key) >= 32


def test_production_requires_secret_key():
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        _settings(debug=False)


def test_short_secret_key_rejected():
    with pytest.raises(ValidationError, match="at least 32 characters"):
        _settings(debug=True, secret_key="short")


def test_defaults():
    s = _settings(secret_key=GOOD_KEY)
    assert s.port == 4000
    assert s.env == "development"
    assert s.limiter_rps == 2.0
    assert s.limiter_burst == 4
    assert s.limiter_enabled is True
    assert s.cors_trusted_origins == []


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"limiter_rps": -1}, "LIMITER_RPS"),
        ({"limiter_burst": 0}, "LIMITER_BURST"),
        ({"bcrypt_rounds": 3}, "BCRYPT_ROUNDS"),
        ({"bcrypt_rounds": 32}, "BCRYPT_ROUNDS"),
    ],
)
def test_limiter_and_bcrypt_bounds(overrides, message):
    with pytest.raises(ValidationError, match=message):
        _settings(secret_key=GOOD_KEY, **overrides)


def test_cors_origins_from_env(monkeypatch):
    monkeypatch.setenv("CORS_TRUSTED_ORIGINS", '["http://localhost:9000", "http://localhost:9001"]')
    s = _settings(secret_key=GOOD_KEY)
    assert s.cors_trusted_origins == ["http://localhost:9000", "http://localhost:9001"]
