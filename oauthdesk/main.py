"""
FastAPI application serving the loopback OAuth callback.

This module wires dependencies and configures the application, and runs
the interactive sign-in: it serves the callback on the loopback address
while a handshake is pending, then shuts the server down.
Business logic is in oauthdesk/core, infrastructure in oauthdesk/infrastructure.
"""

import argparse
import asyncio
import logging
import socket
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import uvicorn
from fastapi import FastAPI

from oauthdesk.core.domain import Account
from oauthdesk.core.oauth_service import OAuthCoordinator
from oauthdesk.logging_config import setup_global_logging
from oauthdesk.oauth import router as oauth_router
from oauthdesk.oauth.config import OAuthConfig, get_oauth_config, SUPPORTED_PROVIDERS
from oauthdesk.oauth.dependencies import get_coordinator, use_coordinator

logger = logging.getLogger(__name__)


# ============================================================================
# Application Lifecycle
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    A handshake still pending at shutdown is left as is; the caller awaiting
    it owns that decision.
    """
    logger.info("Callback server starting up...")
    yield
    if get_coordinator().has_pending_handshake():
        logger.warning("Callback server shutting down with a sign-in still pending")
    logger.info("Callback server shut down")


app = FastAPI(
    title="oauthdesk callback",
    description="Loopback receiver for OAuth2 sign-in redirects",
    version="1.0.0",
    lifespan=lifespan,
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "oauthdesk",
        "timestamp": datetime.now(UTC).isoformat(),
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(oauth_router.router)


# ============================================================================
# Interactive Sign-in
# ============================================================================


async def sign_in(
    provider: str,
    config: OAuthConfig | None = None,
    coordinator: OAuthCoordinator | None = None,
) -> Account:
    """
    Sign in with a provider through the system browser.

    Serves the callback router on the configured loopback address, starts a
    handshake and waits for it to complete. Waits indefinitely if the user
    never finishes in the browser.

    Args:
        provider: Provider name (github, gitlab)
        config: OAuth configuration (uses default if not provided)
        coordinator: Coordinator to use instead of the app's singleton while
            signing in; the singleton is restored afterwards

    Returns:
        The signed-in Account

    Raises:
        ValueError: If the provider is not configured
        OSError: If the callback port cannot be bound
        HandshakeRejectedError: If the provider refused the sign-in
        ProviderAPIError: If the provider could not be reached
    """
    if config is None:
        config = get_oauth_config()
    credentials = config.credentials_for(provider)

    # Bind up front so a taken port raises here instead of exiting inside uvicorn
    sock = socket.create_server((config.callback_host, config.callback_port))

    with sock, use_coordinator(coordinator) as active:
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=config.callback_host,
                port=config.callback_port,
                log_config=None,
            )
        )
        serve_task = asyncio.create_task(server.serve(sockets=[sock]))

        try:
            while not server.started:
                if serve_task.done():
                    serve_task.result()
                    raise RuntimeError("Callback server stopped during startup")
                await asyncio.sleep(0.05)

            outcome = active.begin_handshake(
                credentials.provider,
                credentials.endpoint,
                credentials.client_id,
                credentials.client_secret,
            )
            return await outcome
        finally:
            server.should_exit = True
            await serve_task


def main() -> None:
    """Command-line entry point: ``oauthdesk-sign-in github``."""
    parser = argparse.ArgumentParser(description="Sign in through the system browser")
    parser.add_argument("provider", choices=SUPPORTED_PROVIDERS)
    args = parser.parse_args()

    setup_global_logging()

    account = asyncio.run(sign_in(args.provider))
    logger.info(
        f"Signed in as {account.login}",
        extra={"provider": account.provider.value, "login": account.login},
    )


if __name__ == "__main__":
    main()
