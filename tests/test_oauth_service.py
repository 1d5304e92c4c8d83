"""
Tests for the OAuth handshake coordinator.
"""

import asyncio
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from respx import MockRouter

from oauthdesk.core.domain import Account, Provider
from oauthdesk.core.exceptions import (
    HandshakeRejectedError,
    ProtocolMisuseError,
    ProviderAPIError,
)
from oauthdesk.core.oauth_service import OAuthCoordinator, new_state_token
from oauthdesk.infrastructure.oauth_providers import ProviderAPIClient


def begin(coordinator: OAuthCoordinator) -> "asyncio.Future[Account]":
    return coordinator.begin_handshake(
        Provider.GITHUB, "https://example.test", "id1", "secret1"
    )


def opened_state(browser: MagicMock) -> str:
    """State parameter of the last URL sent to the browser."""
    url = browser.open.call_args.args[0]
    return parse_qs(urlparse(url).query)["state"][0]


class TestBeginHandshake:
    """Tests for begin_handshake."""

    @pytest.mark.asyncio
    async def test_returns_pending_future(self, coordinator):
        """Test the outcome is returned unsettled."""
        outcome = begin(coordinator)

        assert isinstance(outcome, asyncio.Future)
        assert not outcome.done()
        assert coordinator.has_pending_handshake()

    @pytest.mark.asyncio
    async def test_stores_session(self, coordinator):
        """Test the pending session captures the inputs."""
        begin(coordinator)

        session = coordinator.pending
        assert session.provider == Provider.GITHUB
        assert session.endpoint == "https://example.test"
        assert session.client_id == "id1"
        assert session.client_secret == "secret1"
        assert session.state

    @pytest.mark.asyncio
    async def test_opens_browser_with_state(self, coordinator, gateway, browser):
        """Test the authorize URL carries the session state and is opened."""
        begin(coordinator)

        state = coordinator.pending.state
        gateway.authorization_url.assert_called_once_with(
            Provider.GITHUB, "https://example.test", "id1", state
        )
        browser.open.assert_called_once()
        assert opened_state(browser) == state

    @pytest.mark.asyncio
    async def test_uses_token_factory(self, gateway, browser):
        """Test the correlation token comes from the injected factory."""
        coordinator = OAuthCoordinator(
            gateway=gateway, browser=browser, token_factory=lambda: "fixed-state"
        )

        begin(coordinator)

        assert coordinator.pending.state == "fixed-state"
        assert opened_state(browser) == "fixed-state"

    @pytest.mark.asyncio
    async def test_state_is_fresh_per_handshake(self, coordinator, browser):
        """Test each handshake gets a new state."""
        begin(coordinator)
        first = coordinator.pending.state
        coordinator.resolve_handshake(MagicMock(login="alice"))

        begin(coordinator)
        second = coordinator.pending.state

        assert first != second

    @pytest.mark.asyncio
    async def test_browser_failure_not_reported_through_outcome(
        self, coordinator, browser
    ):
        """Test a browser that fails to open leaves the handshake pending."""
        browser.open.side_effect = OSError("no display")

        outcome = begin(coordinator)

        assert not outcome.done()
        assert coordinator.has_pending_handshake()

    def test_new_state_token_unique(self):
        """Test generated tokens do not repeat."""
        tokens = {new_state_token() for _ in range(100)}

        assert len(tokens) == 100
        assert all(len(t) >= 32 for t in tokens)


class TestSecondBegin:
    """
    Tests for beginning a handshake while another is pending.

    The earlier handshake is replaced, not rejected: its outcome never settles.
    """

    @pytest.mark.asyncio
    async def test_second_begin_orphans_first(self, coordinator, sample_account):
        """Test the first outcome never settles once replaced."""
        first = begin(coordinator)
        second = coordinator.begin_handshake(
            Provider.GITLAB, "https://gitlab.example.test", "id2", "secret2"
        )

        coordinator.resolve_handshake(sample_account)

        assert second.result() == sample_account
        assert not first.done()
        assert not coordinator.has_pending_handshake()

    @pytest.mark.asyncio
    async def test_second_handshake_is_the_only_reachable(
        self, coordinator, gateway
    ):
        """Test exchange uses the replacing handshake's parameters."""
        begin(coordinator)
        first_state = coordinator.pending.state
        coordinator.begin_handshake(
            Provider.GITLAB, "https://gitlab.example.test", "id2", "secret2"
        )
        second_state = coordinator.pending.state

        await coordinator.exchange_code("abc123")

        gateway.request_token.assert_awaited_once_with(
            Provider.GITLAB,
            "https://gitlab.example.test",
            "id2",
            "secret2",
            second_state,
            "abc123",
        )
        assert not coordinator.matches_state(first_state)
        assert coordinator.matches_state(second_state)

    @pytest.mark.asyncio
    async def test_second_begin_logs_warning(self, coordinator, caplog):
        """Test replacing a pending handshake is logged."""
        begin(coordinator)
        begin(coordinator)

        assert "Replacing pending handshake" in caplog.text


class TestExchangeCode:
    """Tests for exchange_code."""

    @pytest.mark.asyncio
    async def test_returns_identity_when_token_issued(
        self, coordinator, gateway, sample_account
    ):
        """Test the profile is fetched with the issued token."""
        begin(coordinator)
        state = coordinator.pending.state

        result = await coordinator.exchange_code("abc123")

        assert result == sample_account
        gateway.request_token.assert_awaited_once_with(
            Provider.GITHUB, "https://example.test", "id1", "secret1", state, "abc123"
        )
        gateway.fetch_identity.assert_awaited_once_with(
            Provider.GITHUB, "https://example.test", "tok"
        )

    @pytest.mark.asyncio
    async def test_returns_none_when_no_token(self, coordinator, gateway):
        """Test a declined exchange returns None without fetching the profile."""
        gateway.request_token.return_value = None
        begin(coordinator)

        result = await coordinator.exchange_code("abc123")

        assert result is None
        gateway.fetch_identity.assert_not_called()

    @pytest.mark.asyncio
    async def test_does_not_settle_or_clear(self, coordinator):
        """Test exchange leaves settlement to the caller."""
        outcome = begin(coordinator)

        await coordinator.exchange_code("abc123")

        assert not outcome.done()
        assert coordinator.has_pending_handshake()

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, coordinator, gateway):
        """Test network failures surface to the caller of exchange_code."""
        gateway.request_token.side_effect = ProviderAPIError("Network error")
        outcome = begin(coordinator)

        with pytest.raises(ProviderAPIError):
            await coordinator.exchange_code("abc123")

        assert not outcome.done()
        assert coordinator.has_pending_handshake()

    @pytest.mark.asyncio
    async def test_profile_error_propagates(self, coordinator, gateway):
        """Test profile fetch failures surface to the caller."""
        gateway.fetch_identity.side_effect = ProviderAPIError("API error")
        begin(coordinator)

        with pytest.raises(ProviderAPIError):
            await coordinator.exchange_code("abc123")


class TestResolveHandshake:
    """Tests for resolve_handshake."""

    @pytest.mark.asyncio
    async def test_settles_outcome_with_account(self, coordinator, sample_account):
        """Test the outcome resolves with exactly the given account."""
        outcome = begin(coordinator)

        coordinator.resolve_handshake(sample_account)

        assert await outcome is sample_account
        assert not coordinator.has_pending_handshake()

    @pytest.mark.asyncio
    async def test_second_resolve_is_fatal(
        self, coordinator, fatal_reporter, sample_account
    ):
        """Test resolving twice reports misuse instead of re-settling."""
        outcome = begin(coordinator)
        coordinator.resolve_handshake(sample_account)

        with pytest.raises(ProtocolMisuseError):
            coordinator.resolve_handshake(MagicMock(login="mallory"))

        fatal_reporter.assert_called_once()
        assert outcome.result() is sample_account

    @pytest.mark.asyncio
    async def test_resolve_after_caller_cancelled(self, coordinator, sample_account):
        """Test resolving a cancelled outcome clears the slot quietly."""
        outcome = begin(coordinator)
        outcome.cancel()

        coordinator.resolve_handshake(sample_account)

        assert outcome.cancelled()
        assert not coordinator.has_pending_handshake()


class TestRejectHandshake:
    """Tests for reject_handshake."""

    @pytest.mark.asyncio
    async def test_settles_outcome_with_error(self, coordinator):
        """Test the outcome fails with exactly the given error."""
        outcome = begin(coordinator)
        error = HandshakeRejectedError("access denied")

        coordinator.reject_handshake(error)

        with pytest.raises(HandshakeRejectedError) as exc_info:
            await outcome
        assert exc_info.value is error
        assert not coordinator.has_pending_handshake()

    @pytest.mark.asyncio
    async def test_second_reject_is_fatal(self, coordinator, fatal_reporter):
        """Test rejecting twice reports misuse."""
        outcome = begin(coordinator)
        coordinator.reject_handshake(HandshakeRejectedError("first"))

        with pytest.raises(ProtocolMisuseError):
            coordinator.reject_handshake(HandshakeRejectedError("second"))

        fatal_reporter.assert_called_once()
        with pytest.raises(HandshakeRejectedError, match="first"):
            outcome.result()

    @pytest.mark.asyncio
    async def test_resolve_after_reject_is_fatal(
        self, coordinator, fatal_reporter, sample_account
    ):
        """Test a settled handshake cannot be settled the other way."""
        outcome = begin(coordinator)
        coordinator.reject_handshake(HandshakeRejectedError("denied"))

        with pytest.raises(ProtocolMisuseError):
            coordinator.resolve_handshake(sample_account)

        fatal_reporter.assert_called_once()
        assert isinstance(outcome.exception(), HandshakeRejectedError)


class TestWithoutPendingHandshake:
    """Operations invoked before begin_handshake are usage errors."""

    @pytest.mark.asyncio
    async def test_exchange_without_begin(self, coordinator, fatal_reporter, gateway):
        """Test exchange reports misuse and calls no collaborator."""
        with pytest.raises(ProtocolMisuseError, match="begin_handshake"):
            await coordinator.exchange_code("abc123")

        fatal_reporter.assert_called_once()
        gateway.request_token.assert_not_called()

    def test_resolve_without_begin(self, coordinator, fatal_reporter, sample_account):
        """Test resolve reports misuse."""
        with pytest.raises(ProtocolMisuseError, match="resolving"):
            coordinator.resolve_handshake(sample_account)

        fatal_reporter.assert_called_once()

    def test_reject_without_begin(self, coordinator, fatal_reporter):
        """Test reject reports misuse."""
        with pytest.raises(ProtocolMisuseError, match="rejecting"):
            coordinator.reject_handshake(HandshakeRejectedError("denied"))

        fatal_reporter.assert_called_once()

    def test_default_reporter_logs_critical(self, gateway, browser, caplog):
        """Test the default reporter logs before raising."""
        coordinator = OAuthCoordinator(gateway=gateway, browser=browser)

        with pytest.raises(ProtocolMisuseError):
            coordinator.reject_handshake(HandshakeRejectedError("denied"))

        assert any(r.levelname == "CRITICAL" for r in caplog.records)


class TestMatchesState:
    """Tests for matches_state."""

    def test_no_pending_handshake(self, coordinator):
        """Test nothing matches when no handshake is pending."""
        assert coordinator.matches_state("anything") is False

    @pytest.mark.asyncio
    async def test_matching_and_mismatching(self, coordinator):
        """Test only the live state matches."""
        begin(coordinator)
        state = coordinator.pending.state

        assert coordinator.matches_state(state) is True
        assert coordinator.matches_state(state + "x") is False
        assert coordinator.matches_state("") is False
        assert coordinator.matches_state(None) is False

    @pytest.mark.asyncio
    async def test_settled_state_no_longer_matches(self, coordinator, sample_account):
        """Test a stale callback for a settled handshake does not match."""
        begin(coordinator)
        state = coordinator.pending.state
        coordinator.resolve_handshake(sample_account)

        assert coordinator.matches_state(state) is False


class TestSignInScenario:
    """End-to-end handshake against a mocked provider API."""

    @pytest.mark.asyncio
    async def test_full_handshake(self, respx_mock: MockRouter, browser):
        """Test begin, exchange and resolve settle the original outcome."""
        token_route = respx_mock.post(
            "https://example.test/login/oauth/access_token"
        ).mock(return_value=httpx.Response(200, json={"access_token": "tok"}))
        respx_mock.get("https://example.test/user").mock(
            return_value=httpx.Response(200, json={"login": "alice", "id": 1})
        )
        respx_mock.get("https://example.test/user/emails").mock(
            return_value=httpx.Response(200, json=[])
        )
        coordinator = OAuthCoordinator(gateway=ProviderAPIClient(), browser=browser)

        outcome = coordinator.begin_handshake(
            Provider.GITHUB, "https://example.test", "id1", "secret1"
        )
        state = opened_state(browser)
        assert coordinator.matches_state(state)

        account = await coordinator.exchange_code("abc123")
        coordinator.resolve_handshake(account)

        result = await outcome
        assert result.login == "alice"
        assert result.token == "tok"
        sent = parse_qs(token_route.calls.last.request.content.decode())
        assert sent["code"] == ["abc123"]
        assert sent["state"] == [state]
