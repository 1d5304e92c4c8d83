"""
Shared test configuration and fixtures.
"""

from unittest.mock import AsyncMock, MagicMock
from urllib.parse import urlencode

import pytest

from oauthdesk.core.domain import Account, Provider
from oauthdesk.core.oauth_service import OAuthCoordinator
from oauthdesk.oauth.dependencies import set_coordinator


def fake_authorization_url(provider, endpoint, client_id, state):
    """Deterministic stand-in for the provider URL builder."""
    query = urlencode({"client_id": client_id, "state": state})
    return f"{endpoint}/login/oauth/authorize?{query}"


@pytest.fixture
def sample_account():
    """Account returned by a successful profile fetch."""
    return Account(
        provider=Provider.GITHUB,
        endpoint="https://example.test",
        token="tok",
        login="alice",
        id=1,
    )


@pytest.fixture
def gateway(sample_account):
    """
    Mock provider gateway.

    The token exchange issues ``tok`` and the profile fetch returns
    sample_account unless a test overrides them.
    """
    mock = MagicMock()
    mock.authorization_url.side_effect = fake_authorization_url
    mock.request_token = AsyncMock(return_value="tok")
    mock.fetch_identity = AsyncMock(return_value=sample_account)
    return mock


@pytest.fixture
def browser():
    """Mock system browser."""
    return MagicMock()


@pytest.fixture
def fatal_reporter():
    """Mock fatal-error reporter."""
    return MagicMock()


@pytest.fixture
def coordinator(gateway, browser, fatal_reporter):
    """Coordinator wired to mocks, with no handshake pending."""
    return OAuthCoordinator(
        gateway=gateway,
        browser=browser,
        report_fatal_error=fatal_reporter,
    )


@pytest.fixture
def app_coordinator(coordinator):
    """Install the mock-wired coordinator as the app's singleton."""
    set_coordinator(coordinator)
    yield coordinator
    set_coordinator(None)
