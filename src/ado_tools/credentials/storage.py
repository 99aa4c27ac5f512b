"""
Secret storage backends.

Storage is an opaque key/value store for secret strings:
- CredentialStorage: Abstract base class
- EncryptedFileStorage: Fernet-encrypted files (default)
- InMemoryStorage: For testing
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

KEY_ENV_VAR = "ADO_TOOLS_CREDENTIAL_KEY"


class CredentialStorageError(Exception):
    """Raised when a secret cannot be read or written."""

    pass


class CredentialStorage(ABC):
    """
    Abstract storage backend for secrets.

    Implementations must provide load, save and delete. Values are opaque
    strings; callers own their format.
    """

    @abstractmethod
    def load(self, name: str) -> str | None:
        """
        Load a secret.

        Args:
            name: The key the secret was saved under

        Returns:
            The secret, or None if nothing is stored
        """
        pass

    @abstractmethod
    def save(self, name: str, secret: str) -> None:
        """
        Save (overwrite) a secret.

        Args:
            name: Key to store the secret under
            secret: The secret value
        """
        pass

    @abstractmethod
    def delete(self, name: str) -> bool:
        """
        Delete a secret.

        Returns:
            True if a secret existed and was deleted, False otherwise
        """
        pass


class EncryptedFileStorage(CredentialStorage):
    """
    Encrypted file-based secret storage.

    Uses Fernet symmetric encryption (AES-128-CBC + HMAC). Each secret is a
    separate file under {base_path}/secrets/{name}.enc.

    The encryption key is read from ADO_TOOLS_CREDENTIAL_KEY. If that is not
    set, a key file is generated once under {base_path}/.key with owner-only
    permissions and reused on later runs.

    Example:
        storage = EncryptedFileStorage(Path.home() / ".ado-tools")
        storage.save("azureDevOpsToken", token.to_secret())
    """

    def __init__(
        self,
        base_path: str | Path,
        encryption_key: bytes | None = None,
        key_env_var: str = KEY_ENV_VAR,
    ):
        from cryptography.fernet import Fernet

        self.base_path = Path(base_path)
        (self.base_path / "secrets").mkdir(parents=True, exist_ok=True)

        if encryption_key:
            key = encryption_key
        elif os.environ.get(key_env_var):
            key = os.environ[key_env_var].encode()
        else:
            key = self._load_or_create_key_file()

        self._fernet = Fernet(key)

    def _load_or_create_key_file(self) -> bytes:
        from cryptography.fernet import Fernet

        key_path = self.base_path / ".key"
        if key_path.exists():
            return key_path.read_bytes().strip()

        key = Fernet.generate_key()
        key_path.write_bytes(key)
        key_path.chmod(0o600)
        logger.info(f"Generated new credential encryption key at {key_path}")
        return key

    def _secret_path(self, name: str) -> Path:
        safe_name = name.replace("/", "_").replace("\\", "_").replace("..", "_")
        return self.base_path / "secrets" / f"{safe_name}.enc"

    def load(self, name: str) -> str | None:
        from cryptography.fernet import InvalidToken

        path = self._secret_path(name)
        if not path.exists():
            return None

        try:
            return self._fernet.decrypt(path.read_bytes()).decode()
        except InvalidToken as e:
            raise CredentialStorageError(f"Failed to decrypt secret '{name}'") from e

    def save(self, name: str, secret: str) -> None:
        path = self._secret_path(name)
        try:
            path.write_bytes(self._fernet.encrypt(secret.encode()))
            path.chmod(0o600)
        except OSError as e:
            raise CredentialStorageError(f"Failed to write secret '{name}': {e.strerror}") from e
        logger.debug(f"Saved encrypted secret '{name}'")

    def delete(self, name: str) -> bool:
        path = self._secret_path(name)
        if path.exists():
            path.unlink()
            logger.debug(f"Deleted secret '{name}'")
            return True
        return False


class InMemoryStorage(CredentialStorage):
    """
    In-memory storage for testing.

    Secrets are kept in a dictionary and lost when the process exits.
    """

    def __init__(self, initial_data: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial_data or {})

    def load(self, name: str) -> str | None:
        return self._data.get(name)

    def save(self, name: str, secret: str) -> None:
        self._data[name] = secret

    def delete(self, name: str) -> bool:
        return self._data.pop(name, None) is not None

    def clear(self) -> None:
        self._data.clear()
