"""
Tests for the credential data models.

Tests cover:
- Token validity with the five minute expiry buffer
- Token (de)serialization for the credential store
- Device code challenge presentation
"""

import json
from datetime import UTC, datetime, timedelta

from ado_tools.credentials import (
    EXPIRY_BUFFER,
    AccessToken,
    DeviceCodeChallenge,
    TokenSource,
)
from pydantic import SecretStr


def _token(expires_in: timedelta) -> AccessToken:
    return AccessToken(access_token=SecretStr("tok"), expires_on=datetime.now(UTC) + expires_in)


class TestAccessTokenValidity:
    """Tests for AccessToken.is_valid()."""

    def test_expiring_in_six_minutes_is_valid(self):
        assert _token(timedelta(minutes=6)).is_valid()

    def test_expiring_in_four_minutes_is_invalid(self):
        assert not _token(timedelta(minutes=4)).is_valid()

    def test_expired_token_is_invalid(self):
        assert not _token(timedelta(hours=-1)).is_valid()

    def test_exactly_at_buffer_is_invalid(self):
        """now + 5min must be strictly before expiry."""
        now = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
        token = AccessToken(access_token=SecretStr("tok"), expires_on=now + EXPIRY_BUFFER)
        assert not token.is_valid(now=now)
        assert token.is_valid(now=now - timedelta(seconds=1))

    def test_expires_in_seconds_never_negative(self):
        assert _token(timedelta(hours=-1)).expires_in_seconds == 0


class TestAccessToken:
    """Tests for building and serializing tokens."""

    def test_issue_uses_lifetime(self):
        token = AccessToken.issue("abc", expires_in=3600, source=TokenSource.DEVICE_CODE)
        assert token.get_secret_value() == "abc"
        assert token.source == TokenSource.DEVICE_CODE
        assert 3590 <= token.expires_in_seconds <= 3600

    def test_issue_defaults_to_one_hour(self):
        token = AccessToken.issue("abc")
        assert 3590 <= token.expires_in_seconds <= 3600

    def test_secret_not_in_repr(self):
        token = AccessToken.issue("super-secret-token")
        assert "super-secret-token" not in repr(token)
        assert "super-secret-token" not in str(token)

    def test_authorization_header(self):
        assert AccessToken.issue("abc").authorization_header() == "Bearer abc"

    def test_to_secret_format(self):
        expires = datetime(2030, 5, 1, 8, 30, tzinfo=UTC)
        token = AccessToken(access_token=SecretStr("abc"), expires_on=expires)
        data = json.loads(token.to_secret())
        assert data == {"accessToken": "abc", "expiresOn": expires.isoformat()}

    def test_from_secret_restores_token(self):
        expires = datetime(2030, 5, 1, 8, 30, tzinfo=UTC)
        original = AccessToken(access_token=SecretStr("abc"), expires_on=expires)

        restored = AccessToken.from_secret(original.to_secret())

        assert restored.get_secret_value() == "abc"
        assert restored.expires_on == expires
        assert restored.source == TokenSource.STORE

    def test_from_secret_assumes_utc_for_naive_timestamps(self):
        restored = AccessToken.from_secret('{"accessToken": "abc", "expiresOn": "2030-05-01T08:30:00"}')
        assert restored.expires_on == datetime(2030, 5, 1, 8, 30, tzinfo=UTC)


class TestDeviceCodeChallenge:
    """Tests for DeviceCodeChallenge."""

    def test_expiry_in_minutes(self):
        challenge = DeviceCodeChallenge("https://microsoft.com/devicelogin", "ABCD-1234", expires_in=900)
        assert challenge.expires_in_minutes == 15

    def test_instructions_contain_url_code_and_expiry(self):
        challenge = DeviceCodeChallenge("https://microsoft.com/devicelogin", "ABCD-1234", expires_in=900)
        text = challenge.instructions()
        assert "https://microsoft.com/devicelogin" in text
        assert "ABCD-1234" in text
        assert "15 minutes" in text
