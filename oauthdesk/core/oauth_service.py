"""
Core service coordinating a single OAuth 2.0 authorization-code handshake.

The handshake starts in the user's browser and finishes when the provider
redirects back to the loopback callback router. The coordinator keeps the
one pending handshake, correlates the callback through the ``state``
token, and settles the future the original caller is awaiting.
"""

import asyncio
import hmac
import logging
import secrets
from dataclasses import dataclass, field

from oauthdesk.core.domain import Account, Provider
from oauthdesk.core.exceptions import ProtocolMisuseError
from oauthdesk.core.ports import (
    BrowserOpener,
    FatalErrorReporter,
    ProviderGateway,
    TokenFactory,
)

logger = logging.getLogger(__name__)


def new_state_token() -> str:
    """Mint an unguessable correlation token for the OAuth ``state`` parameter."""
    return secrets.token_urlsafe(32)


def log_fatal_error(message: str) -> None:
    """Default fatal-error reporter: log at CRITICAL before the error is raised."""
    logger.critical(message)


@dataclass
class HandshakeSession:
    """
    The pending handshake.

    ``outcome`` is the one-shot result channel handed back to the caller of
    begin_handshake. It completes exactly once, through settle or fail.
    """

    provider: Provider
    state: str
    endpoint: str
    client_id: str
    client_secret: str = field(repr=False)
    outcome: "asyncio.Future[Account]" = field(repr=False)

    def settle(self, account: Account) -> None:
        """Complete the outcome with the signed-in account."""
        if self.outcome.done():
            # The awaiting caller cancelled and walked away.
            logger.warning(
                "Handshake outcome already completed, dropping account",
                extra={"provider": self.provider.value},
            )
            return
        self.outcome.set_result(account)

    def fail(self, error: BaseException) -> None:
        """Complete the outcome with an error."""
        if self.outcome.done():
            logger.warning(
                f"Handshake outcome already completed, dropping error: {error}",
                extra={"provider": self.provider.value},
            )
            return
        self.outcome.set_exception(error)


class OAuthCoordinator:
    """
    Session manager holding at most one pending handshake.

    Starting a handshake while another is pending replaces it: the earlier
    outcome is orphaned and never settles. Callers serialize sign-ins.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        browser: BrowserOpener,
        report_fatal_error: FatalErrorReporter = log_fatal_error,
        token_factory: TokenFactory = new_state_token,
    ):
        """
        Initialize the coordinator.

        Args:
            gateway: Provider API used for the URL, token exchange and profile
            browser: Opens the authorization URL in the system browser
            report_fatal_error: Notified of out-of-order calls before they raise
            token_factory: Mints the correlation token for each handshake
        """
        self.gateway = gateway
        self.browser = browser
        self.report_fatal_error = report_fatal_error
        self.token_factory = token_factory
        self._session: HandshakeSession | None = None

    @property
    def pending(self) -> HandshakeSession | None:
        """The pending handshake, if any."""
        return self._session

    def has_pending_handshake(self) -> bool:
        """Check if a handshake is waiting for its callback."""
        return self._session is not None

    def matches_state(self, state: str | None) -> bool:
        """
        Check that an inbound callback ``state`` belongs to the pending handshake.

        Returns False when nothing is pending, so stale callbacks from settled
        handshakes never match.
        """
        if self._session is None or not state:
            return False
        return hmac.compare_digest(state, self._session.state)

    def begin_handshake(
        self,
        provider: Provider,
        endpoint: str,
        client_id: str,
        client_secret: str,
    ) -> "asyncio.Future[Account]":
        """
        Ask the user to sign in with the given provider. This opens their browser.

        Must be called from a running event loop. Returns immediately; the
        future completes only when resolve_handshake or reject_handshake is
        called, and may never complete if the user abandons the browser flow.

        Args:
            provider: Identity backend to authenticate against
            endpoint: API endpoint of the provider instance
            client_id: OAuth application client ID
            client_secret: OAuth application client secret

        Returns:
            Future resolving to the signed-in Account
        """
        loop = asyncio.get_running_loop()

        if self._session is not None:
            logger.warning(
                "Replacing pending handshake; its outcome will never complete",
                extra={"provider": self._session.provider.value},
            )

        session = HandshakeSession(
            provider=provider,
            state=self.token_factory(),
            endpoint=endpoint,
            client_id=client_id,
            client_secret=client_secret,
            outcome=loop.create_future(),
        )
        self._session = session

        url = self.gateway.authorization_url(
            provider, endpoint, client_id, session.state
        )

        logger.info(
            f"Starting OAuth handshake for provider: {provider.value}",
            extra={
                "provider": provider.value,
                "endpoint": endpoint,
                "state_prefix": session.state[:6],
            },
        )

        try:
            self.browser.open(url)
        except Exception as e:
            logger.error(f"Failed to open browser for sign-in: {e}")

        return session.outcome

    async def exchange_code(self, code: str) -> Account | None:
        """
        Request the authenticated account using the code from the OAuth callback.

        Does not settle or clear the pending handshake, and does not check the
        callback state; the callback router does both.

        Args:
            code: Authorization code from the provider redirect

        Returns:
            The signed-in Account, or None if the provider issued no token

        Raises:
            ProtocolMisuseError: If no handshake is pending
            ProviderAPIError: If the provider cannot be reached
        """
        session = self._require_session(
            "`begin_handshake` must be called before requesting an authenticated account."
        )

        token = await self.gateway.request_token(
            session.provider,
            session.endpoint,
            session.client_id,
            session.client_secret,
            session.state,
            code,
        )
        if not token:
            logger.warning(
                "Token exchange declined",
                extra={"provider": session.provider.value},
            )
            return None

        return await self.gateway.fetch_identity(
            session.provider, session.endpoint, token
        )

    def resolve_handshake(self, account: Account) -> None:
        """
        Resolve the pending handshake with the given account.

        Only valid after begin_handshake, and only once per handshake.

        Raises:
            ProtocolMisuseError: If no handshake is pending
        """
        session = self._require_session(
            "`begin_handshake` must be called before resolving a handshake."
        )
        session.settle(account)
        self._session = None

        logger.info(
            f"OAuth handshake completed for {account.login}",
            extra={"provider": session.provider.value, "login": account.login},
        )

    def reject_handshake(self, error: BaseException) -> None:
        """
        Reject the pending handshake with the given error.

        Only valid after begin_handshake, and only once per handshake.

        Raises:
            ProtocolMisuseError: If no handshake is pending
        """
        session = self._require_session(
            "`begin_handshake` must be called before rejecting a handshake."
        )
        session.fail(error)
        self._session = None

        logger.info(
            f"OAuth handshake rejected: {error}",
            extra={"provider": session.provider.value},
        )

    def _require_session(self, message: str) -> HandshakeSession:
        if self._session is None:
            self.report_fatal_error(message)
            raise ProtocolMisuseError(message)
        return self._session
