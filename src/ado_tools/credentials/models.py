"""
Data models for the Azure DevOps credential lifecycle.

The access token is held as a SecretStr so that it never ends up in a repr,
a log line or a validation error by accident.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, SecretStr

# Tokens are considered expired this long before their real expiry
EXPIRY_BUFFER = timedelta(minutes=5)

# Lifetime assumed when a provider does not report one
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)

# Azure DevOps resource (application) id and the derived scope
AZURE_DEVOPS_RESOURCE_ID = "499b84ac-1321-427f-aa17-267ca6975798"
AZURE_DEVOPS_SCOPE = f"{AZURE_DEVOPS_RESOURCE_ID}/.default"


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class AuthMethod(str, Enum):
    """Interactive sign-in strategies the user can choose between."""

    HOST_SESSION = "host_session"
    """Delegated session of the host environment (Azure CLI login)"""

    DEVICE_CODE = "device_code"
    """OAuth device authorization grant in a browser"""


class TokenSource(str, Enum):
    """Which strategy produced a token."""

    HOST_SESSION = "host_session"
    DEVICE_CODE = "device_code"
    REFRESH = "refresh"
    STORE = "store"


class AccessToken(BaseModel):
    """
    A bearer token for Azure DevOps together with its expiry.

    Attributes:
        access_token: The bearer token (SecretStr prevents accidental logging)
        expires_on: When the token expires
        source: Strategy that produced the token
    """

    access_token: SecretStr
    expires_on: datetime
    source: TokenSource = TokenSource.STORE

    def is_valid(self, now: datetime | None = None) -> bool:
        """Valid only while now + 5 minutes is still before expiry."""
        now = now or _utc_now()
        return now + EXPIRY_BUFFER < self.expires_on

    @property
    def expires_in_seconds(self) -> int:
        delta = self.expires_on - _utc_now()
        return max(0, int(delta.total_seconds()))

    def get_secret_value(self) -> str:
        """Get the raw token (use sparingly)."""
        return self.access_token.get_secret_value()

    def authorization_header(self) -> str:
        return f"Bearer {self.get_secret_value()}"

    @classmethod
    def issue(
        cls,
        access_token: str,
        expires_in: int | float | None = None,
        source: TokenSource = TokenSource.STORE,
    ) -> AccessToken:
        """
        Build a token from a lifetime in seconds.

        Args:
            access_token: The raw token string
            expires_in: Lifetime in seconds; defaults to one hour when unknown
            source: Strategy that produced the token
        """
        lifetime = timedelta(seconds=expires_in) if expires_in else DEFAULT_TOKEN_LIFETIME
        return cls(
            access_token=SecretStr(access_token),
            expires_on=_utc_now() + lifetime,
            source=source,
        )

    def to_secret(self) -> str:
        """Serialize for the credential store, including the real token value."""
        return json.dumps(
            {
                "accessToken": self.get_secret_value(),
                "expiresOn": self.expires_on.isoformat(),
            }
        )

    @classmethod
    def from_secret(cls, secret: str) -> AccessToken:
        """Inverse of to_secret()."""
        data = json.loads(secret)
        expires_on = datetime.fromisoformat(data["expiresOn"])
        if expires_on.tzinfo is None:
            expires_on = expires_on.replace(tzinfo=UTC)
        return cls(
            access_token=SecretStr(data["accessToken"]),
            expires_on=expires_on,
            source=TokenSource.STORE,
        )


@dataclass(frozen=True)
class DeviceCodeChallenge:
    """
    Verification details the user needs to finish a device-code sign-in.

    Attributes:
        verification_uri: Page where the user enters the code
        user_code: Short code shown to the user
        expires_in: Seconds until the code expires
        message: Provider-supplied instructions, if any
    """

    verification_uri: str
    user_code: str
    expires_in: int
    message: str = ""

    @property
    def expires_in_minutes(self) -> int:
        return self.expires_in // 60

    def instructions(self) -> str:
        return (
            "To sign in to Azure DevOps:\n"
            f"1. Go to: {self.verification_uri}\n"
            f"2. Enter code: {self.user_code}\n"
            f"This code expires in {self.expires_in_minutes} minutes."
        )
