"""
Domain exceptions for the OAuth handshake.

These exceptions separate programming-contract violations from
provider-side failures. The callback router and the FastAPI exception
handlers in main.py decide how each one is surfaced.
"""


class ProtocolMisuseError(RuntimeError):
    """
    Raised when a handshake operation is invoked out of order.

    Calling exchange, resolve or reject with no pending handshake indicates
    a bug in the caller, not a runtime condition to recover from.
    """

    pass


class HandshakeRejectedError(Exception):
    """
    Raised into the waiting caller when the provider refuses the sign-in.

    Covers an ``error`` callback parameter, a callback without a code, and
    a token exchange that declined to issue a token.
    """

    def __init__(self, message: str, error: str | None = None):
        super().__init__(message)
        self.error = error


class ProviderAPIError(Exception):
    """Raised for network or server errors talking to the identity provider."""

    pass


class ProviderAuthError(ProviderAPIError):
    """The provider rejected the access token (401/403)."""

    pass
