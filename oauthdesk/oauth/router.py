"""
OAuth2 loopback callback endpoints.

The provider redirects the browser here after the user approves (or
denies) the sign-in:
- GET /oauth/callback - Verify state, exchange the code, settle the handshake
- GET /oauth/status - Report whether a handshake is pending

The state check happens here, before the coordinator is asked to exchange
or settle anything, and again after the exchange returns. A callback whose
state does not match the pending handshake never touches it.
"""

import html
import logging

from fastapi import APIRouter, status
from fastapi.responses import HTMLResponse

from oauthdesk.core.exceptions import HandshakeRejectedError, ProviderAPIError
from oauthdesk.oauth.dependencies import Coordinator


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth", tags=["oauth"])


def _page(title: str, message: str, status_code: int) -> HTMLResponse:
    body = (
        "<!DOCTYPE html><html><head><meta charset='utf-8'>"
        f"<title>{html.escape(title)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1><p>{html.escape(message)}</p></body></html>"
    )
    return HTMLResponse(content=body, status_code=status_code)


def _superseded_page() -> HTMLResponse:
    logger.warning("Handshake settled or replaced during code exchange, dropping callback")
    return _page(
        "Sign-in link expired",
        "A newer sign-in attempt replaced this one.",
        status.HTTP_400_BAD_REQUEST,
    )


@router.get("/callback")
async def callback(
    coordinator: Coordinator,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
):
    """
    Handle the OAuth2 redirect from the provider.

    Exchanges the authorization code for an account and settles the pending
    handshake with it, or rejects the handshake with the provider's error.

    Args:
        coordinator: Handshake coordinator
        code: Authorization code
        state: Correlation token echoed back by the provider
        error: OAuth error code if the user denied access
        error_description: Human-readable error from the provider

    Returns:
        HTML page telling the user what happened
    """
    if not coordinator.has_pending_handshake():
        logger.warning("OAuth callback received with no sign-in in progress")
        return _page(
            "No sign-in in progress",
            "Start signing in from the application and try again.",
            status.HTTP_409_CONFLICT,
        )

    if not coordinator.matches_state(state):
        logger.warning(
            "OAuth callback state does not match the pending handshake",
            extra={"state_prefix": (state or "")[:6]},
        )
        return _page(
            "Sign-in link expired",
            "This sign-in link does not belong to the current sign-in attempt.",
            status.HTTP_400_BAD_REQUEST,
        )

    if error:
        message = error_description or error
        logger.info(f"Provider returned an error: {error}")
        coordinator.reject_handshake(HandshakeRejectedError(message, error=error))
        return _page("Sign-in failed", message, status.HTTP_400_BAD_REQUEST)

    if not code:
        coordinator.reject_handshake(
            HandshakeRejectedError("The provider did not return an authorization code")
        )
        return _page(
            "Sign-in failed",
            "The provider did not return an authorization code.",
            status.HTTP_400_BAD_REQUEST,
        )

    try:
        account = await coordinator.exchange_code(code)
    except ProviderAPIError as e:
        logger.error(f"Provider error during code exchange: {e}")
        if not coordinator.matches_state(state):
            return _superseded_page()
        coordinator.reject_handshake(e)
        return _page(
            "Sign-in failed",
            "Could not reach the provider. Return to the application and try again.",
            status.HTTP_502_BAD_GATEWAY,
        )

    # The handshake may have been settled or replaced while the code was exchanged
    if not coordinator.matches_state(state):
        return _superseded_page()

    if account is None:
        coordinator.reject_handshake(
            HandshakeRejectedError("Unable to fetch authenticated user")
        )
        return _page(
            "Sign-in failed",
            "The provider did not issue an access token.",
            status.HTTP_401_UNAUTHORIZED,
        )

    coordinator.resolve_handshake(account)
    return _page(
        "Signed in",
        f"Signed in as {account.login}. You can close this window and return to the application.",
        status.HTTP_200_OK,
    )


@router.get("/status")
async def handshake_status(coordinator: Coordinator):
    """
    Report whether a handshake is waiting for its callback.

    Returns:
        Pending flag and the provider being signed in to
    """
    session = coordinator.pending
    return {
        "pending": session is not None,
        "provider": session.provider.value if session else None,
    }
