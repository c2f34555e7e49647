"""Exceptions raised by the lioncloud client."""

from __future__ import annotations


class LionCloudError(Exception):
    """Base class for all lioncloud errors."""


class RegistrationError(LionCloudError):
    """Raised when the installation key is rejected by ``/auth/init``."""


class AuthenticationError(LionCloudError):
    """Raised when signing in with the account credentials fails."""


class UnauthorizedError(AuthenticationError):
    """Raised when a request is still answered with 401 after re-authenticating."""


class TransportError(LionCloudError, ConnectionError):
    """Raised on network failures and request timeouts.

    Wraps :class:`aiohttp.ClientError` and :class:`TimeoutError` so callers
    do not need to import ``aiohttp`` to catch connectivity problems.
    """


class MalformedResponseError(LionCloudError, ValueError):
    """Raised when a response body cannot be decoded or lacks required fields."""


class NoDeviceFoundError(LionCloudError):
    """Raised when the account has no machine bound to it."""


class ArgumentInvalidError(LionCloudError, ValueError):
    """Raised when a caller-supplied value is out of range or malformed."""


class CommandFailedError(LionCloudError):
    """Raised when the API answers a request with an unexpected status code."""

    def __init__(self, action: str, status: int, body: str = "") -> None:
        msg = f"{action} failed: {status}"
        super().__init__(f"{msg} - {body}" if body else msg)
        self.action = action
        self.status = status
        self.body = body


class ConfigError(LionCloudError, ValueError):
    """Raised when the bridge configuration file is missing or invalid."""
