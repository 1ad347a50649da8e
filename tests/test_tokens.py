"""Unit tests for auth/tokens.py -- TokenService.

Covers:
- generate_plaintext() format: 26 characters of base32, no padding
- generate() persists only the hash and returns the plaintext once
- authenticate() succeeds for a fresh token of the right scope
- authenticate() collapses malformed, unknown, wrong-scope and expired tokens
  into InvalidCredentialsError
- revoke_all() removes every token of one scope and is idempotent
- authenticate_password(): unknown email and wrong password look identical,
  and the unknown-email path still runs bcrypt
- store failures surface as ServerError
- purge_expired() deletes only expired rows
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.models import SCOPE_ACTIVATION, SCOPE_AUTHENTICATION, User
from auth.store import TokenStore, UserStore
from auth.tokens import TOKEN_LENGTH, TokenService, generate_plaintext, is_well_formed
from conftest import TEST_HASHER, FakeClock, make_engine
from core.errors import InvalidCredentialsError, ServerError

SECRET = "s" * 40
START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def stores():
    engine = make_engine("tokens")
    yield UserStore(engine), TokenStore(engine)
    engine.dispose()


@pytest.fixture
def service(stores, clock):
    users, tokens = stores
    return TokenService(users, tokens, SECRET, TEST_HASHER, clock=clock)


@pytest.fixture
def user(stores):
    users, _ = stores
    u = User(name="Alice", email="alice@example.com", password_hash=TEST_HASHER.hash("pa55word-long"))
    users.insert(u)
    return u


def _db_error() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("database is locked"))


# ---------------------------------------------------------------------------
# Plaintext format
# ---------------------------------------------------------------------------


class TestPlaintext:
    def test_length_and_alphabet(self):
        token = generate_plaintext()
        assert len(token) == TOKEN_LENGTH
        assert set(token) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZ234567")

    def test_tokens_are_unique(self):
        assert len({generate_plaintext() for _ in range(200)}) == 200

    def test_is_well_formed(self):
        assert is_well_formed(generate_plaintext())
        assert not is_well_formed("short")
        assert not is_well_formed("")


# ---------------------------------------------------------------------------
# generate / authenticate
# ---------------------------------------------------------------------------


class TestGenerateAndAuthenticate:
    def test_round_trip_returns_owner(self, service, user):
        token = service.generate(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)
        assert len(token.plaintext) == TOKEN_LENGTH
        assert token.expiry == START + timedelta(hours=1)
        found = service.authenticate(token.plaintext, SCOPE_AUTHENTICATION)
        assert found.id == user.id
        assert found.email == "alice@example.com"

    def test_only_hash_is_stored(self, service, user):
        token = service.generate(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)
        assert token.hash == service.hash_token(token.plaintext)
        assert token.hash != token.plaintext
        assert len(token.hash) == 64

    def test_hash_depends_on_secret(self, stores, user):
        users, tokens = stores
        a = TokenService(users, tokens, "a" * 40, TEST_HASHER)
        b = TokenService(users, tokens, "b" * 40, TEST_HASHER)
        assert a.hash_token("SAMEPLAINTEXTSAMEPLAINTEXT") != b.hash_token("SAMEPLAINTEXTSAMEPLAINTEXT")

    def test_wrong_scope_is_rejected(self, service, user):
        token = service.generate(user.id, timedelta(hours=1), SCOPE_ACTIVATION)
        with pytest.raises(InvalidCredentialsError):
            service.authenticate(token.plaintext, SCOPE_AUTHENTICATION)

    def test_unknown_token_is_rejected(self, service, user):
        with pytest.raises(InvalidCredentialsError):
            service.authenticate(generate_plaintext(), SCOPE_AUTHENTICATION)

    def test_malformed_token_never_reaches_store(self, user):
        users = MagicMock()
        service = TokenService(users, MagicMock(), SECRET, TEST_HASHER)
        with pytest.raises(InvalidCredentialsError):
            service.authenticate("abc", SCOPE_AUTHENTICATION)
        users.get_for_token.assert_not_called()

    def test_expired_token_is_rejected(self, service, user, clock):
        token = service.generate(user.id, timedelta(minutes=5), SCOPE_AUTHENTICATION)
        clock.advance(timedelta(minutes=4, seconds=59))
        assert service.authenticate(token.plaintext, SCOPE_AUTHENTICATION).id == user.id
        clock.advance(timedelta(seconds=1))
        with pytest.raises(InvalidCredentialsError):
            service.authenticate(token.plaintext, SCOPE_AUTHENTICATION)

    @pytest.mark.parametrize("ttl", [timedelta(0), timedelta(seconds=-1)])
    def test_non_positive_ttl_is_caller_bug(self, service, user, ttl):
        with pytest.raises(ValueError):
            service.generate(user.id, ttl, SCOPE_AUTHENTICATION)

    def test_unknown_scope_is_caller_bug(self, service, user):
        with pytest.raises(ValueError):
            service.generate(user.id, timedelta(hours=1), "password-reset")

    def test_insert_failure_is_server_error(self, user):
        tokens = MagicMock()
        tokens.insert.side_effect = _db_error()
        service = TokenService(MagicMock(), tokens, SECRET, TEST_HASHER)
        with pytest.raises(ServerError):
            service.generate(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)

    def test_lookup_failure_is_server_error(self):
        users = MagicMock()
        users.get_for_token.side_effect = _db_error()
        service = TokenService(users, MagicMock(), SECRET, TEST_HASHER)
        with pytest.raises(ServerError):
            service.authenticate(generate_plaintext(), SCOPE_AUTHENTICATION)


# ---------------------------------------------------------------------------
# revoke_all / purge_expired
# ---------------------------------------------------------------------------


class TestRevocation:
    def test_revoke_all_removes_every_token_of_scope(self, service, user):
        first = service.generate(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)
        second = service.generate(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)
        assert service.revoke_all(user.id, SCOPE_AUTHENTICATION) == 2
        for token in (first, second):
            with pytest.raises(InvalidCredentialsError):
                service.authenticate(token.plaintext, SCOPE_AUTHENTICATION)

    def test_revoke_all_keeps_other_scopes(self, service, user):
        activation = service.generate(user.id, timedelta(hours=1), SCOPE_ACTIVATION)
        service.generate(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)
        service.revoke_all(user.id, SCOPE_AUTHENTICATION)
        assert service.authenticate(activation.plaintext, SCOPE_ACTIVATION).id == user.id

    def test_revoke_all_is_idempotent(self, service, user):
        service.generate(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)
        assert service.revoke_all(user.id, SCOPE_AUTHENTICATION) == 1
        assert service.revoke_all(user.id, SCOPE_AUTHENTICATION) == 0

    def test_purge_expired(self, service, user, clock):
        short = service.generate(user.id, timedelta(minutes=1), SCOPE_AUTHENTICATION)
        long = service.generate(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)
        clock.advance(timedelta(minutes=2))
        assert service.purge_expired() == 1
        assert service.authenticate(long.plaintext, SCOPE_AUTHENTICATION).id == user.id
        with pytest.raises(InvalidCredentialsError):
            service.authenticate(short.plaintext, SCOPE_AUTHENTICATION)


# ---------------------------------------------------------------------------
# authenticate_password
# ---------------------------------------------------------------------------


class TestAuthenticatePassword:
    def test_correct_password(self, service, user):
        assert service.authenticate_password("alice@example.com", "pa55word-long").id == user.id

    def test_email_lookup_ignores_case(self, service, user):
        assert service.authenticate_password("ALICE@Example.com", "pa55word-long").id == user.id

    def test_wrong_password(self, service, user):
        with pytest.raises(InvalidCredentialsError) as wrong:
            service.authenticate_password("alice@example.com", "not-the-password")
        with pytest.raises(InvalidCredentialsError) as unknown:
            service.authenticate_password("nobody@example.com", "not-the-password")
        assert wrong.value.message == unknown.value.message
        assert wrong.value.code == unknown.value.code

    def test_unknown_email_still_runs_bcrypt(self, stores):
        users, tokens = stores
        hasher = MagicMock()
        service = TokenService(users, tokens, SECRET, hasher)
        with pytest.raises(InvalidCredentialsError):
            service.authenticate_password("nobody@example.com", "pa55word-long")
        hasher.verify_dummy.assert_called_once_with("pa55word-long")

    def test_store_failure_is_server_error(self):
        users = MagicMock()
        users.get_by_email.side_effect = _db_error()
        service = TokenService(users, MagicMock(), SECRET, TEST_HASHER)
        with pytest.raises(ServerError):
            service.authenticate_password("alice@example.com", "pa55word-long")
