"""
Error taxonomy for Azure DevOps tools.

Core components raise these typed errors; only the tool adapters and the CLI
convert them into user-facing text.
"""

from __future__ import annotations

ERROR_BODY_LIMIT = 200


class AdoToolsError(Exception):
    """Base exception for all Azure DevOps tool errors."""

    pass


class ConfigurationError(AdoToolsError):
    """Raised when the organization (or other required configuration) is not set."""

    pass


class ValidationError(AdoToolsError):
    """Raised when required parameters are missing or malformed."""

    pass


class ReadonlyModeError(AdoToolsError):
    """Raised when a mutating operation is attempted while readonly mode is on."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"Readonly mode is enabled, {operation} is not allowed. "
            "Run 'ado-tools readonly off' or unset ADO_READONLY to disable it."
        )


class AuthenticationError(AdoToolsError):
    """Raised when every token acquisition strategy failed."""

    pass


class AuthenticationCancelledError(AuthenticationError):
    """Raised when the user abandoned an interactive sign-in."""

    pass


class RemoteError(AdoToolsError):
    """
    Non-success response from the Azure DevOps REST API.

    Attributes:
        status_code: HTTP status code
        reason: HTTP reason phrase
        body: Response body, truncated for diagnostics
    """

    def __init__(self, action: str, status_code: int, reason: str = "", body: str = ""):
        self.action = action
        self.status_code = status_code
        self.reason = reason
        self.body = (body or "")[:ERROR_BODY_LIMIT]
        message = f"HTTP {status_code} {reason}".rstrip()
        if self.body:
            message += f". Response: {self.body}"
        super().__init__(message)


def safe_error_message(error: BaseException) -> str:
    """
    Return only the message of an error.

    Provider errors may embed request data (including tokens) in their
    attributes, so log lines must use this instead of the exception object.
    """
    message = str(error)
    return message if message else type(error).__name__
