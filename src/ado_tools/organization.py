"""Process-wide Azure DevOps organization context."""

from __future__ import annotations

import threading

from .errors import ConfigurationError, ValidationError

NOT_CONFIGURED_MESSAGE = (
    "Organization URL not set. Please configure your Azure DevOps organization first."
)


def normalize_organization_url(url: str) -> str:
    """Trim whitespace, one trailing slash and a trailing /_apis segment."""
    clean = url.strip()
    if clean.endswith("/"):
        clean = clean[:-1]
    if clean.endswith("/_apis"):
        clean = clean[: -len("/_apis")]
    return clean


def validate_organization_url(url: str | None) -> str:
    """
    Check a user-entered organization URL.

    Raises:
        ValidationError: If the URL is empty or not an Azure DevOps URL
    """
    if not url or not url.strip():
        raise ValidationError("Organization URL is required")
    if "dev.azure.com" not in url and "visualstudio.com" not in url:
        raise ValidationError(
            "Please enter a valid Azure DevOps URL "
            "(https://dev.azure.com/yourorganization or https://yourorganization.visualstudio.com)"
        )
    return url


class OrganizationContext:
    """
    The single active organization base URL.

    Set at startup from configuration or later by explicit user action;
    the lock makes every read see a fully-formed value.
    """

    def __init__(self, url: str | None = None):
        self._lock = threading.Lock()
        self._url: str | None = None
        if url:
            self.set(url)

    def set(self, url: str) -> str:
        normalized = normalize_organization_url(url)
        with self._lock:
            self._url = normalized or None
        return normalized

    def get(self) -> str | None:
        with self._lock:
            return self._url

    def require(self) -> str:
        url = self.get()
        if not url:
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)
        return url

    def clear(self) -> None:
        with self._lock:
            self._url = None
