"""Tests for session materialization, cookie encoding and validation."""

import base64
import json
from datetime import UTC, datetime, timedelta

import pytest
from cryptography.fernet import Fernet, InvalidToken
from starlette.responses import Response

from evedash.auth.errors import (
    ConfigurationError,
    Expired,
    InsufficientScope,
    StoreError,
    StoreErrorKind,
    Unauthenticated,
)
from evedash.auth.sessions import (
    Session,
    SessionStore,
    build_fernet,
    materialize_session,
)
from evedash.auth.sso import Identity, TokenGrant
from evedash.config import SessionConfig

NOW = datetime(2026, 10, 16, 12, 0, 0, tzinfo=UTC)

ALICE = Identity(
    character_id=100,
    character_name="Alice",
    character_owner_hash="owner-hash-abc",
    scopes=frozenset({"publicData", "esi-location.read_location.v1"}),
)


def _grant(expires_in: int = 1200) -> TokenGrant:
    return TokenGrant(
        access_token="tok", token_type="Bearer", expires_in=expires_in, refresh_token="r1"
    )


def _session(expires_at: datetime = NOW + timedelta(seconds=1200)) -> Session:
    return Session(identity=ALICE, access_token="tok", expires_at=expires_at)


class TestMaterializeSession:
    def test_expiry_is_now_plus_lifetime(self):
        session = materialize_session(ALICE, _grant(1200), NOW)

        assert session.expires_at == NOW + timedelta(seconds=1200)
        assert session.identity == ALICE
        assert session.access_token == "tok"
        assert session.refresh_token == "r1"

    def test_repr_hides_tokens(self):
        session = materialize_session(ALICE, _grant(), NOW)
        assert "access_token" not in repr(session)
        assert "refresh_token" not in repr(session)

    def test_is_expired_boundary(self):
        session = materialize_session(ALICE, _grant(60), NOW)
        expiry = NOW + timedelta(seconds=60)

        assert session.is_expired(expiry - timedelta(milliseconds=1)) is False
        assert session.is_expired(expiry) is True
        assert session.is_expired(expiry + timedelta(seconds=1)) is True


class TestBuildFernet:
    def test_configured_key(self):
        key = Fernet.generate_key()
        token = build_fernet(key.decode()).encrypt(b"x")
        assert Fernet(key).decrypt(token) == b"x"

    def test_empty_key_generates_ephemeral(self):
        first = build_fernet("")
        second = build_fernet("")
        token = first.encrypt(b"x")
        assert first.decrypt(token) == b"x"
        with pytest.raises(InvalidToken):
            second.decrypt(token)

    def test_invalid_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            build_fernet("not-a-fernet-key")


class TestSessionEncoding:
    def test_encode_decode(self, session_store):
        session = materialize_session(ALICE, _grant(), NOW)

        decoded = session_store.decode(session_store.encode(session))

        assert decoded.identity == ALICE
        assert decoded.access_token == "tok"
        assert decoded.expires_at == session.expires_at
        assert decoded.refresh_token == "r1"

    def test_cookie_hides_identity(self, session_store):
        raw = session_store.encode(_session())
        assert "Alice" not in raw

    def test_absent(self, session_store):
        for raw in (None, ""):
            with pytest.raises(StoreError) as exc_info:
                session_store.decode(raw)
            assert exc_info.value.kind is StoreErrorKind.ABSENT

    def test_garbage_is_malformed(self, session_store):
        for raw in ("garbage", "{not json", "é", "a" * 500):
            with pytest.raises(StoreError) as exc_info:
                session_store.decode(raw)
            assert exc_info.value.kind is StoreErrorKind.MALFORMED

    def test_tampered_is_malformed(self, session_store):
        raw = session_store.encode(_session())
        data = bytearray(base64.urlsafe_b64decode(raw))
        data[-40] ^= 0x01
        tampered = base64.urlsafe_b64encode(bytes(data)).decode()

        with pytest.raises(StoreError) as exc_info:
            session_store.decode(tampered)

        assert exc_info.value.kind is StoreErrorKind.MALFORMED

    def test_other_key_is_malformed(self, session_store):
        other = SessionStore(SessionConfig(), Fernet(Fernet.generate_key()))
        raw = other.encode(_session())

        with pytest.raises(StoreError) as exc_info:
            session_store.decode(raw)

        assert exc_info.value.kind is StoreErrorKind.MALFORMED

    def test_wrong_payload_version_is_malformed(self, app_settings):
        fernet = Fernet(app_settings.session.secret_key.encode())
        store = SessionStore(app_settings.session, fernet)
        raw = fernet.encrypt(json.dumps({"v": 99}).encode()).decode()

        with pytest.raises(StoreError) as exc_info:
            store.decode(raw)

        assert exc_info.value.kind is StoreErrorKind.MALFORMED

    def test_missing_fields_are_malformed(self, app_settings):
        fernet = Fernet(app_settings.session.secret_key.encode())
        store = SessionStore(app_settings.session, fernet)
        raw = fernet.encrypt(json.dumps({"v": 1, "expires": NOW.isoformat()}).encode()).decode()

        with pytest.raises(StoreError) as exc_info:
            store.decode(raw)

        assert exc_info.value.kind is StoreErrorKind.MALFORMED


class TestSessionCookie:
    def test_write_sets_cookie_lifetime_to_token_lifetime(self, session_store):
        response = Response()

        session_store.write(response, materialize_session(ALICE, _grant(1200), NOW), NOW, True)

        header = response.headers["set-cookie"]
        assert header.startswith("eve_session=")
        assert "Max-Age=1200" in header
        assert "HttpOnly" in header
        assert "Secure" in header
        assert "SameSite=lax" in header

    def test_clear_expires_cookie(self, session_store):
        response = Response()

        session_store.clear(response, secure=False)

        header = response.headers["set-cookie"]
        assert header.startswith("eve_session=")
        assert "Max-Age=0" in header


class TestValidate:
    def test_absent_is_unauthenticated(self, session_store):
        with pytest.raises(Unauthenticated):
            session_store.validate(None, now=NOW)

    def test_malformed_is_unauthenticated(self, session_store):
        with pytest.raises(Unauthenticated):
            session_store.validate("garbage", now=NOW)

    def test_valid_just_before_expiry(self, session_store):
        expiry = NOW + timedelta(seconds=1200)
        raw = session_store.encode(_session(expiry))

        character = session_store.validate(raw, now=expiry - timedelta(milliseconds=1))

        assert character.identity == ALICE
        assert character.character_id == 100
        assert character.access_token == "tok"

    def test_expired_at_expiry(self, session_store):
        expiry = NOW + timedelta(seconds=1200)
        raw = session_store.encode(_session(expiry))

        with pytest.raises(Expired) as exc_info:
            session_store.validate(raw, now=expiry)

        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Not authenticated"

    def test_insufficient_scope(self, session_store):
        raw = session_store.encode(_session())

        with pytest.raises(InsufficientScope) as exc_info:
            session_store.validate(
                raw,
                {"esi-skills.read_skills.v1", "esi-location.read_location.v1"},
                now=NOW,
            )

        assert exc_info.value.missing == frozenset({"esi-skills.read_skills.v1"})
        assert exc_info.value.status_code == 403
        assert exc_info.value.message == (
            "Insufficient permissions. Required scope: esi-skills.read_skills.v1"
        )

    def test_expiry_checked_before_scope(self, session_store):
        raw = session_store.encode(_session(NOW))

        with pytest.raises(Expired):
            session_store.validate(raw, {"esi-skills.read_skills.v1"}, now=NOW)

    def test_granted_scopes_pass(self, session_store):
        raw = session_store.encode(_session())

        character = session_store.validate(raw, {"publicData"}, now=NOW)

        assert character.identity.character_name == "Alice"

    def test_validate_does_not_extend_session(self, session_store):
        raw = session_store.encode(_session())

        session_store.validate(raw, now=NOW)

        assert session_store.decode(raw).expires_at == NOW + timedelta(seconds=1200)
