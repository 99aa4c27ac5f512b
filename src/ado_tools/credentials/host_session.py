"""
Delegated host session via the Azure CLI.

The host environment's own sign-in (``az login``) is reused to obtain an
Azure DevOps token:
- silent: ``az account get-access-token`` against an existing session
- interactive: ``az login`` first, then the same token request

A missing CLI or a missing session is reported as "no session" (None),
never as an exception, so callers can fall through to other strategies.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from datetime import UTC, datetime
from typing import Any

from pydantic import SecretStr

from ..errors import AuthenticationError, safe_error_message
from .models import AZURE_DEVOPS_RESOURCE_ID, DEFAULT_TOKEN_LIFETIME, AccessToken, TokenSource

logger = logging.getLogger(__name__)


class AzureCliSessionProvider:
    """
    Obtain tokens from the Azure CLI's signed-in account.

    Example:
        provider = AzureCliSessionProvider()
        token = await provider.get_session(create_if_none=False)
        if token is None:
            token = await provider.get_session(create_if_none=True)
    """

    def __init__(
        self,
        resource: str = AZURE_DEVOPS_RESOURCE_ID,
        tenant: str | None = None,
        executable: str = "az",
    ):
        self.resource = resource
        self.tenant = tenant
        self.executable = executable

    async def get_session(self, create_if_none: bool = False) -> AccessToken | None:
        """
        Get a token from the CLI session.

        Args:
            create_if_none: Run an interactive ``az login`` when no session exists

        Returns:
            AccessToken, or None if no session is available

        Raises:
            AuthenticationError: If an interactive login was requested and failed
        """
        token = await self._get_access_token()
        if token is not None or not create_if_none:
            return token

        args = ["login", "--allow-no-subscriptions", "--output", "none"]
        if self.tenant:
            args += ["--tenant", self.tenant]
        try:
            code, _, stderr = await self._run_az(*args)
        except FileNotFoundError as e:
            raise AuthenticationError("Azure CLI ('az') is not installed or not on PATH") from e
        if code != 0:
            raise AuthenticationError(f"Azure CLI login failed: {_first_line(stderr)}")

        token = await self._get_access_token()
        if token is None:
            raise AuthenticationError("Azure CLI login completed but no token could be obtained")
        return token

    async def sign_out(self) -> None:
        """The CLI session belongs to the host, so it is left untouched."""
        logger.info("Azure CLI session is managed by the host; run 'az logout' to end it")

    async def _get_access_token(self) -> AccessToken | None:
        args = ["account", "get-access-token", "--resource", self.resource, "--output", "json"]
        if self.tenant:
            args += ["--tenant", self.tenant]

        try:
            code, stdout, stderr = await self._run_az(*args)
        except FileNotFoundError:
            logger.debug("Azure CLI not found; no host session available")
            return None

        if code != 0:
            logger.debug(f"No Azure CLI session: {_first_line(stderr)}")
            return None

        try:
            return self._parse_token(json.loads(stdout))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Unexpected Azure CLI token output: {safe_error_message(e)}")
            return None

    @staticmethod
    def _parse_token(data: dict[str, Any]) -> AccessToken:
        if data.get("expires_on"):
            expires_on = datetime.fromtimestamp(int(data["expires_on"]), tz=UTC)
        elif data.get("expiresOn"):
            # Older CLI versions report local time without an offset
            expires_on = datetime.fromisoformat(data["expiresOn"]).astimezone(UTC)
        else:
            expires_on = datetime.now(UTC) + DEFAULT_TOKEN_LIFETIME

        return AccessToken(
            access_token=SecretStr(data["accessToken"]),
            expires_on=expires_on,
            source=TokenSource.HOST_SESSION,
        )

    async def _run_az(self, *args: str) -> tuple[int, str, str]:
        """Run the CLI and return (exit code, stdout, stderr)."""
        executable = shutil.which(self.executable)
        if executable is None:
            raise FileNotFoundError(self.executable)

        process = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        return process.returncode or 0, stdout.decode(), stderr.decode()


def _first_line(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return lines[0] if lines else "unknown error"
