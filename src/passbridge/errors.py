"""
Error taxonomy.

Build-time errors (configuration, walk/read, encryption) abort a whole
snapshot build. Request-time errors carry the HTTP status they map to.
"""

from __future__ import annotations


class PassbridgeError(Exception):
    """Base class for every error passbridge raises on purpose."""


class ConfigurationError(PassbridgeError):
    """Recipient file missing or unreadable, or invalid settings."""


class BuildError(PassbridgeError):
    """Walking or reading the password store failed."""


class EncryptionError(PassbridgeError):
    """The crypto engine failed to encrypt or re-encode a payload."""


class RequestError(PassbridgeError):
    """A request that cannot be answered with a response body.

    Attributes:
        status: HTTP status code for the error envelope.
    """

    status = 400

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class RequestValidationError(RequestError):
    """Wrong method, content type, malformed body or username type."""


class UnknownSecretError(RequestError):
    """Well-formed lookup that matches no secret in the live snapshot."""

    def __init__(self, message: str = "unknown secret"):
        super().__init__(message)
