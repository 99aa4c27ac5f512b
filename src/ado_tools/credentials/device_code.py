"""
OAuth 2.0 device authorization grant (RFC 8628) for Azure DevOps.

The provider talks to the Microsoft identity platform directly with httpx:
- start(): request a device code and return a cancellable DeviceCodeFlow
- DeviceCodeFlow.wait(): poll the token endpoint until the user finishes
- acquire_silent(): refresh-token grant for an account seen earlier

Refresh tokens are kept in memory only (the provider's account cache) and
are dropped by clear_accounts() on sign-out.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..errors import AuthenticationCancelledError, AuthenticationError, safe_error_message
from .models import AZURE_DEVOPS_SCOPE, AccessToken, DeviceCodeChallenge, TokenSource

logger = logging.getLogger(__name__)

# Visual Studio public client id, pre-authorized for Azure DevOps
VISUAL_STUDIO_CLIENT_ID = "872cd9fa-d31f-45e0-9eab-6e460a02d1f1"

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

VerificationListener = Callable[[DeviceCodeChallenge], Awaitable[None]]


@dataclass
class DeviceCodeConfig:
    """
    Configuration for the device-code provider.

    Attributes:
        client_id: Public client id
        tenant: Directory tenant ("organizations", "common" or a tenant id)
        authority_host: Identity platform host
        scopes: Requested scopes; offline_access yields a refresh token
        request_timeout: Timeout for each HTTP request in seconds
    """

    client_id: str = VISUAL_STUDIO_CLIENT_ID
    tenant: str = "organizations"
    authority_host: str = "https://login.microsoftonline.com"
    scopes: list[str] = field(default_factory=lambda: [AZURE_DEVOPS_SCOPE, "offline_access"])
    request_timeout: float = 30.0

    @property
    def device_code_url(self) -> str:
        return f"{self.authority_host}/{self.tenant}/oauth2/v2.0/devicecode"

    @property
    def token_url(self) -> str:
        return f"{self.authority_host}/{self.tenant}/oauth2/v2.0/token"


class DeviceCodeError(AuthenticationError):
    """
    Error response from the token endpoint.

    Attributes:
        error: OAuth2 error code (e.g., 'expired_token', 'authorization_declined')
        description: Human-readable error description
    """

    def __init__(self, error: str, description: str = ""):
        self.error = error
        self.description = description
        super().__init__(f"{error}: {description}" if description else error)


class DeviceCodeFlow:
    """
    Handle for an in-progress device-code sign-in.

    The challenge is available as soon as the flow starts; wait() resolves
    to a token once the user completes the sign-in, and cancel() abandons it.
    """

    def __init__(
        self,
        provider: DeviceCodeProvider,
        challenge: DeviceCodeChallenge,
        device_code: str,
        interval: int,
    ):
        self.challenge = challenge
        self._provider = provider
        self._device_code = device_code
        self._interval = interval
        self._cancelled = asyncio.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def wait(self) -> AccessToken:
        """
        Poll the token endpoint until the user finishes signing in.

        Raises:
            AuthenticationCancelledError: If cancel() was called or the code expired
            DeviceCodeError: If the user declined or the server rejected the code
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.challenge.expires_in
        interval = self._interval

        while True:
            if await self._sleep_or_cancel(interval):
                raise AuthenticationCancelledError("Device code sign-in cancelled by user")
            if loop.time() > deadline:
                raise AuthenticationCancelledError("Device code expired before sign-in completed")

            data = {
                "grant_type": DEVICE_CODE_GRANT,
                "client_id": self._provider.config.client_id,
                "device_code": self._device_code,
            }
            try:
                return await self._provider._token_request(data, TokenSource.DEVICE_CODE)
            except DeviceCodeError as e:
                if e.error == "authorization_pending":
                    continue
                if e.error == "slow_down":
                    interval += 5
                    continue
                if e.error == "authorization_declined":
                    raise AuthenticationCancelledError("Sign-in was declined by the user") from e
                raise

    async def _sleep_or_cancel(self, seconds: float) -> bool:
        """Sleep for the poll interval; return True if cancelled meanwhile."""
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True


class DeviceCodeProvider:
    """
    Device-code token provider for the Microsoft identity platform.

    Usage:
        provider = DeviceCodeProvider()
        flow = await provider.start()
        print(flow.challenge.instructions())
        token = await flow.wait()

    Or in one call, with the challenge delivered to a listener:
        token = await provider.acquire(on_verification=show_code)
    """

    def __init__(
        self,
        config: DeviceCodeConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config or DeviceCodeConfig()
        self._client = http_client
        self._refresh_token: str | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # --- Account cache ---

    @property
    def has_account(self) -> bool:
        return bool(self._refresh_token)

    def clear_accounts(self) -> None:
        """Forget the cached account (refresh token)."""
        self._refresh_token = None

    async def acquire_silent(self) -> AccessToken | None:
        """
        Use the cached account's refresh token, if any.

        Returns:
            A new token, or None if there is no account or the grant failed
        """
        if not self._refresh_token:
            return None

        data = {
            "grant_type": "refresh_token",
            "client_id": self.config.client_id,
            "refresh_token": self._refresh_token,
            "scope": " ".join(self.config.scopes),
        }
        try:
            return await self._token_request(data, TokenSource.REFRESH)
        except (AuthenticationError, httpx.HTTPError) as e:
            logger.info(f"Silent token refresh failed, using device code: {safe_error_message(e)}")
            if isinstance(e, DeviceCodeError) and e.error == "invalid_grant":
                self.clear_accounts()
            return None

    # --- Device code flow ---

    async def start(self) -> DeviceCodeFlow:
        """
        Request a device code.

        Returns:
            A DeviceCodeFlow whose challenge must be shown to the user

        Raises:
            AuthenticationError: If the device code endpoint rejects the request
        """
        client = self._get_client()
        response = await client.post(
            self.config.device_code_url,
            data={"client_id": self.config.client_id, "scope": " ".join(self.config.scopes)},
            headers={"Accept": "application/json"},
        )
        payload = self._parse(response)
        if response.status_code != 200 or "error" in payload:
            raise DeviceCodeError(
                payload.get("error", f"http_{response.status_code}"),
                payload.get("error_description", ""),
            )

        self._require_keys(payload, "device_code", "user_code")
        challenge = DeviceCodeChallenge(
            verification_uri=payload.get("verification_uri") or payload.get("verification_url", ""),
            user_code=payload["user_code"],
            expires_in=int(payload.get("expires_in", 900)),
            message=payload.get("message", ""),
        )
        return DeviceCodeFlow(
            self,
            challenge,
            device_code=payload["device_code"],
            interval=int(payload.get("interval", 5)),
        )

    async def acquire(self, on_verification: VerificationListener | None = None) -> AccessToken:
        """
        Get a token: silently from the account cache, else via a device code.

        Args:
            on_verification: Called once with the challenge before polling starts

        Raises:
            AuthenticationError: If the flow fails or is cancelled
        """
        token = await self.acquire_silent()
        if token is not None:
            return token

        flow = await self.start()
        if on_verification is not None:
            await on_verification(flow.challenge)
        try:
            return await flow.wait()
        except asyncio.CancelledError:
            flow.cancel()
            raise

    # --- Token Request Helpers ---

    async def _token_request(self, data: dict[str, Any], source: TokenSource) -> AccessToken:
        client = self._get_client()
        response = await client.post(
            self.config.token_url,
            data=data,
            headers={"Accept": "application/json"},
        )
        payload = self._parse(response)
        if response.status_code != 200 or "error" in payload:
            raise DeviceCodeError(
                payload.get("error", f"http_{response.status_code}"),
                payload.get("error_description", ""),
            )

        self._require_keys(payload, "access_token")
        if payload.get("refresh_token"):
            self._refresh_token = payload["refresh_token"]

        return AccessToken.issue(
            payload["access_token"],
            expires_in=payload.get("expires_in"),
            source=source,
        )

    @staticmethod
    def _require_keys(payload: dict[str, Any], *keys: str) -> None:
        missing = [key for key in keys if not payload.get(key)]
        if missing:
            raise DeviceCodeError("invalid_response", f"missing {', '.join(missing)}")

    @staticmethod
    def _parse(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}
