"""Exception types raised by the TopstepX MCP server."""

from typing import Optional


class TopstepXError(Exception):
    """Base class for all server errors."""


class ConfigurationError(TopstepXError):
    """Invalid or unsupported configuration value."""


class AuthenticationError(TopstepXError):
    """Credentials are missing or the login was rejected."""


class RequestError(TopstepXError):
    """
    A remote call failed.

    Raised when the response envelope reports ``success: false``, when the
    HTTP status is not 2xx, or when the transport itself fails.
    """

    def __init__(self, message: str, status_code: Optional[int] = None,
                 error_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class ValidationError(TopstepXError):
    """Missing or invalid tool arguments."""


class NotFoundError(TopstepXError):
    """Unresolved symbol, account, order or position."""


class ToolCallError(TopstepXError):
    """A tool call failed; the message is the JSON error result sent to the client."""
