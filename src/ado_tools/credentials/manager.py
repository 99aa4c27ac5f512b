"""
Token lifecycle management for Azure DevOps.

The CredentialManager owns the single cached token and is the only place
that acquires new ones. Acquisition order when the cache cannot be used:

1. Delegated host session, silent (never prompts)
2. User's choice between an interactive host session and the device-code flow

Explicit strategies (get_token_device_code, get_token_host_session) skip the
choice but still short-circuit on a valid cached token.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import httpx

from ..errors import AuthenticationCancelledError, AuthenticationError, safe_error_message
from .models import AccessToken, AuthMethod
from .storage import CredentialStorage, CredentialStorageError

if TYPE_CHECKING:
    from .device_code import DeviceCodeProvider
    from .host_session import AzureCliSessionProvider
    from .prompts import AuthPrompter

logger = logging.getLogger(__name__)

TOKEN_SECRET_KEY = "azureDevOpsToken"


class CredentialManager:
    """
    Produces header-ready bearer tokens while minimizing interactive prompts.

    Responsibilities:
    - Keep the cached token in memory and in the credential store
    - Fall back through the acquisition strategies in a fixed order
    - Serialize acquisition so concurrent callers never prompt twice

    Usage:
        manager = CredentialManager(
            storage=EncryptedFileStorage(home),
            host_session=AzureCliSessionProvider(),
            device_code=DeviceCodeProvider(),
            prompter=ConsolePrompter(),
        )

        headers = await manager.get_auth_headers()
    """

    def __init__(
        self,
        storage: CredentialStorage,
        host_session: AzureCliSessionProvider,
        device_code: DeviceCodeProvider,
        prompter: AuthPrompter | None = None,
        secret_key: str = TOKEN_SECRET_KEY,
    ):
        """
        Initialize the manager.

        Args:
            storage: Secret store used to persist the token between runs
            host_session: Delegated host session provider
            device_code: Device-code flow provider
            prompter: Default presentation layer for interactive sign-in
            secret_key: Name the token is stored under
        """
        self.storage = storage
        self.host_session = host_session
        self.device_code = device_code
        self.prompter = prompter
        self.secret_key = secret_key

        self._cached_token: AccessToken | None = None
        self._lock = asyncio.Lock()

    # --- Token Access ---

    async def get_token(self, interactive: bool = True, prompter: AuthPrompter | None = None) -> str:
        """
        Get a valid access token, acquiring a new one if necessary.

        Args:
            interactive: Allow the method choice prompt when silent attempts fail
            prompter: Overrides the default prompter for this call

        Returns:
            The raw access token

        Raises:
            AuthenticationError: If every strategy failed
            AuthenticationCancelledError: If the user cancelled the sign-in
        """
        async with self._lock:
            cached = self._get_cached_token()
            if cached is not None:
                return cached.get_secret_value()

            token = await self._guarded("Error getting access token", self._acquire(interactive, prompter))
            self._remember(token)
            return token.get_secret_value()

    async def get_token_device_code(self, prompter: AuthPrompter | None = None) -> str:
        """Get a token, using the device-code flow if the cache cannot be used."""
        async with self._lock:
            cached = self._get_cached_token()
            if cached is not None:
                return cached.get_secret_value()

            prompter = prompter or self.prompter
            listener = prompter.show_device_code if prompter is not None else None
            token = await self._guarded(
                "Error getting access token (device code)",
                self.device_code.acquire(on_verification=listener),
            )
            self._remember(token)
            return token.get_secret_value()

    async def get_token_host_session(self) -> str:
        """Get a token, signing in to the host session interactively if needed."""
        async with self._lock:
            cached = self._get_cached_token()
            if cached is not None:
                return cached.get_secret_value()

            token = await self._guarded("Error getting access token (host session)", self._host_interactive())
            self._remember(token)
            return token.get_secret_value()

    async def get_auth_headers(self, interactive: bool = True) -> dict[str, str]:
        """Headers for Azure DevOps REST calls."""
        token = await self.get_token(interactive=interactive)
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def is_authenticated(self) -> bool:
        """
        Check for a usable session without prompting or changing state.

        A valid cached token counts; otherwise the host session is checked
        silently. The device-code flow is never started.
        """
        if self._peek_valid_token() is not None:
            return True

        try:
            return await self.host_session.get_session(create_if_none=False) is not None
        except Exception as e:
            logger.debug(f"Host session check failed: {safe_error_message(e)}")
            return False

    async def sign_out(self) -> None:
        """
        Remove the persisted token and the provider account cache.

        Idempotent; cleanup failures are logged and never raised.
        """
        async with self._lock:
            self._cached_token = None

            try:
                self.storage.delete(self.secret_key)
            except Exception as e:
                logger.error(f"Error deleting stored token: {safe_error_message(e)}")

            try:
                self.device_code.clear_accounts()
            except Exception as e:
                logger.error(f"Error clearing device code accounts: {safe_error_message(e)}")

            try:
                await self.host_session.sign_out()
            except Exception as e:
                logger.error(f"Error during host session sign out: {safe_error_message(e)}")

        logger.info("Signed out of Azure DevOps")

    def invalidate_cache(self) -> None:
        """
        Forget the current token, in memory and in the credential store.

        Used when Azure DevOps rejects a token that still looks valid; the
        next call acquires a new one. Provider accounts are kept, so a
        silent host session or refresh can still succeed.
        """
        self._cached_token = None
        try:
            self.storage.delete(self.secret_key)
        except Exception as e:
            logger.error(f"Error deleting stored token: {safe_error_message(e)}")

    # --- Acquisition ---

    async def _acquire(self, interactive: bool, prompter: AuthPrompter | None) -> AccessToken:
        token = await self._host_silent()
        if token is not None:
            return token

        if not interactive:
            raise AuthenticationError(
                "Not signed in to Azure DevOps. Use the ado_login tool or run 'ado-tools login' first."
            )

        prompter = prompter or self.prompter
        if prompter is None:
            raise AuthenticationError("No valid session and no way to prompt for sign-in")

        method = await prompter.choose_method()
        if method is None:
            raise AuthenticationCancelledError("Authentication cancelled by user")

        if method == AuthMethod.HOST_SESSION:
            return await self._host_interactive()
        return await self.device_code.acquire(on_verification=prompter.show_device_code)

    async def _host_silent(self) -> AccessToken | None:
        try:
            return await self.host_session.get_session(create_if_none=False)
        except Exception as e:
            logger.error(f"Error getting access token silently (host session): {safe_error_message(e)}")
            return None

    async def _host_interactive(self) -> AccessToken:
        token = await self.host_session.get_session(create_if_none=True)
        if token is None:
            raise AuthenticationError("Failed to acquire access token via host session")
        return token

    async def _guarded(self, context: str, acquisition) -> AccessToken:
        """Await an acquisition, mapping every failure to an AuthenticationError."""
        try:
            return await acquisition
        except AuthenticationCancelledError as e:
            logger.warning(f"{context}: {safe_error_message(e)}")
            raise
        except (AuthenticationError, httpx.HTTPError, OSError) as e:
            message = safe_error_message(e)
            logger.error(f"{context}: {message}")
            raise AuthenticationError(f"Authentication failed: {message}") from e

    # --- Cache Helpers ---

    def _get_cached_token(self) -> AccessToken | None:
        """Valid token from memory, else from the store (which then becomes the cache)."""
        token = self._peek_valid_token()
        self._cached_token = token
        return token

    def _peek_valid_token(self) -> AccessToken | None:
        if self._cached_token is not None and self._cached_token.is_valid():
            return self._cached_token

        stored = self._load_stored_token()
        if stored is not None and stored.is_valid():
            return stored
        return None

    def _load_stored_token(self) -> AccessToken | None:
        try:
            secret = self.storage.load(self.secret_key)
            if secret is None:
                return None
            return AccessToken.from_secret(secret)
        except (CredentialStorageError, OSError, ValueError, KeyError) as e:
            logger.error(f"Error retrieving cached token: {safe_error_message(e)}")
            return None

    def _remember(self, token: AccessToken) -> None:
        """Cache the token; persisting it is best-effort."""
        self._cached_token = token
        try:
            self.storage.save(self.secret_key, token.to_secret())
        except Exception as e:
            logger.error(f"Error storing token: {safe_error_message(e)}")
        logger.info(f"Acquired Azure DevOps token via {token.source.value}")
