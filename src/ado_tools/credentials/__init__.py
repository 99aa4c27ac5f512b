"""
Credential lifecycle for Azure DevOps.

Usage:
    from ado_tools.credentials import (
        AzureCliSessionProvider,
        CredentialManager,
        DeviceCodeProvider,
        EncryptedFileStorage,
    )

    manager = CredentialManager(
        storage=EncryptedFileStorage("~/.ado-tools"),
        host_session=AzureCliSessionProvider(),
        device_code=DeviceCodeProvider(),
    )
    headers = await manager.get_auth_headers()
"""

from .device_code import (
    DeviceCodeConfig,
    DeviceCodeError,
    DeviceCodeFlow,
    DeviceCodeProvider,
)
from .host_session import AzureCliSessionProvider
from .manager import TOKEN_SECRET_KEY, CredentialManager
from .models import (
    AZURE_DEVOPS_RESOURCE_ID,
    AZURE_DEVOPS_SCOPE,
    EXPIRY_BUFFER,
    AccessToken,
    AuthMethod,
    DeviceCodeChallenge,
    TokenSource,
)
from .prompts import AuthPrompter, ConfiguredPrompter, ConsolePrompter
from .storage import (
    CredentialStorage,
    CredentialStorageError,
    EncryptedFileStorage,
    InMemoryStorage,
)

__all__ = [
    # Manager
    "CredentialManager",
    "TOKEN_SECRET_KEY",
    # Models
    "AccessToken",
    "AuthMethod",
    "DeviceCodeChallenge",
    "TokenSource",
    "AZURE_DEVOPS_RESOURCE_ID",
    "AZURE_DEVOPS_SCOPE",
    "EXPIRY_BUFFER",
    # Providers
    "AzureCliSessionProvider",
    "DeviceCodeConfig",
    "DeviceCodeError",
    "DeviceCodeFlow",
    "DeviceCodeProvider",
    # Prompts
    "AuthPrompter",
    "ConfiguredPrompter",
    "ConsolePrompter",
    # Storage
    "CredentialStorage",
    "CredentialStorageError",
    "EncryptedFileStorage",
    "InMemoryStorage",
]
