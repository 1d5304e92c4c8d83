"""
FastAPI dependencies for the OAuth callback endpoints.

Provides the handshake coordinator shared by the sign-in entry point and
the loopback callback router.
"""

import logging
from contextlib import contextmanager
from typing import Annotated, Iterator

from fastapi import Depends

from oauthdesk.core.oauth_service import OAuthCoordinator
from oauthdesk.infrastructure.browser import SystemBrowser
from oauthdesk.infrastructure.oauth_providers import ProviderAPIClient
from oauthdesk.oauth.config import OAuthConfig, get_oauth_config


logger = logging.getLogger(__name__)


def create_coordinator(config: OAuthConfig | None = None) -> OAuthCoordinator:
    """
    Create a coordinator wired to the real provider API and system browser.

    Args:
        config: OAuth configuration (uses default if not provided)

    Returns:
        Configured OAuthCoordinator
    """
    if config is None:
        config = get_oauth_config()

    gateway = ProviderAPIClient(redirect_uri=config.get_callback_url())
    return OAuthCoordinator(gateway=gateway, browser=SystemBrowser())


# Global coordinator singleton
_coordinator: OAuthCoordinator | None = None


def get_coordinator() -> OAuthCoordinator:
    """
    Get the coordinator singleton.

    Creates it on first access.
    """
    global _coordinator
    if _coordinator is None:
        _coordinator = create_coordinator()
    return _coordinator


def set_coordinator(coordinator: OAuthCoordinator | None) -> None:
    """
    Replace the coordinator singleton.

    Passing None resets it so the next access creates a fresh one.
    """
    global _coordinator
    _coordinator = coordinator


@contextmanager
def use_coordinator(coordinator: OAuthCoordinator | None) -> Iterator[OAuthCoordinator]:
    """
    Install ``coordinator`` as the singleton for the duration of the block.

    The previous singleton is restored on exit. Passing None uses the
    current one (creating it if needed) and leaves it in place.
    """
    global _coordinator
    if coordinator is None:
        yield get_coordinator()
        return

    previous = _coordinator
    _coordinator = coordinator
    try:
        yield coordinator
    finally:
        _coordinator = previous


# Type aliases for cleaner dependency injection
Coordinator = Annotated[OAuthCoordinator, Depends(get_coordinator)]
