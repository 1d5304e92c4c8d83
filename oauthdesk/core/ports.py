"""
Port definitions (interfaces) for the handshake coordinator.

Ports define the contracts between the coordinator and the outside world:
the system browser, the identity provider's HTTP API and the fatal-error
reporter. Infrastructure adapters implement these ports.
"""

from typing import Protocol

from oauthdesk.core.domain import Account, Provider


class BrowserOpener(Protocol):
    """
    Port (interface) for launching the user's browser.

    Fire-and-forget: the coordinator does not act on the return value.
    """

    def open(self, url: str) -> object:
        """Navigate the system browser to ``url``."""
        ...


class ProviderGateway(Protocol):
    """
    Port (interface) for the identity provider's OAuth and profile API.

    Implemented by ProviderAPIClient in oauthdesk.infrastructure. The
    coordinator depends on this interface, not on authlib or httpx directly.
    """

    def authorization_url(
        self, provider: Provider, endpoint: str, client_id: str, state: str
    ) -> str:
        """
        Build the provider's authorize URL with ``state`` embedded.

        Pure and deterministic for the same inputs.
        """
        ...

    async def request_token(
        self,
        provider: Provider,
        endpoint: str,
        client_id: str,
        client_secret: str,
        state: str,
        code: str,
    ) -> str | None:
        """
        Exchange an authorization code for an access token.

        Returns:
            The access token, or None if the provider declined the exchange

        Raises:
            ProviderAPIError: On network or server errors
        """
        ...

    async def fetch_identity(
        self, provider: Provider, endpoint: str, token: str
    ) -> Account:
        """
        Fetch the account the access token belongs to.

        Raises:
            ProviderAPIError: If the profile cannot be fetched
        """
        ...


class FatalErrorReporter(Protocol):
    """Receives programming-contract violations before they are raised."""

    def __call__(self, message: str) -> None: ...


class TokenFactory(Protocol):
    """Produces an unguessable, unique correlation token."""

    def __call__(self) -> str: ...
