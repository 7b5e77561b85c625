"""Exception hierarchy for OAuth authentication middleware errors.

Configuration errors are raised synchronously while the middleware is being
constructed. Runtime errors cover state validation and backchannel transport
failures.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth related errors."""

    pass


class ConfigurationError(OAuth2Error, ValueError):
    """Raised when the middleware options are missing or inconsistent.

    Always fatal to middleware construction. Never retried.
    """

    def __init__(self, message: str, option_name: str | None = None):
        super().__init__(message)
        self.option_name = option_name

    @classmethod
    def option_must_be_provided(cls, option_name: str) -> ConfigurationError:
        return cls(f"The '{option_name}' option must be provided.", option_name)


class ValidatorHandlerMismatchError(ConfigurationError):
    """Raised when a certificate validator is configured together with a
    backchannel handler that cannot run certificate validation callbacks.
    """

    def __init__(self):
        super().__init__(
            "A backchannel certificate validator cannot be used with a "
            "backchannel HTTP handler that does not support certificate "
            "validation.",
            "BackchannelCertificateValidator",
        )


class CryptographicError(OAuth2Error):
    """Raised when a data protector cannot unprotect a payload.

    The payload was malformed, tampered with, or sealed under a different
    key or purpose chain.
    """

    pass


class StateValidationError(OAuth2Error):
    """Raised when the OAuth state parameter of a callback is rejected.

    This indicates either a missing or unreadable state, or a state that
    does not match the correlation cookie of the browser presenting it.
    """

    pass


class BackchannelError(OAuth2Error):
    """Base exception for backchannel transport failures."""

    pass


class CertificateValidationError(BackchannelError):
    """Raised when the configured certificate validator rejects a server."""

    pass


class ResponseTooLargeError(BackchannelError):
    """Raised when a backchannel response exceeds the buffer limit."""

    def __init__(self, limit: int):
        super().__init__(
            f"Backchannel response exceeded the maximum buffer size of {limit} bytes"
        )
        self.limit = limit
