"""
OAuth 2.0 provider implementations.

Builds authorize URLs, exchanges authorization codes and fetches the
signed-in profile for GitHub (github.com and Enterprise) and GitLab.
"""

import logging
from typing import Any
from urllib.parse import urlparse

import httpx
from authlib.common.urls import url_encode
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri
from pydantic import ValidationError

from oauthdesk.core.domain import Account, Provider
from oauthdesk.core.exceptions import ProviderAPIError, ProviderAuthError


logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_HTML_URL = "https://github.com"

GITHUB_SCOPES = ["repo", "user", "workflow"]
GITLAB_SCOPES = ["read_user", "api"]


def get_html_url(endpoint: str) -> str:
    """
    Get the web URL for a GitHub API endpoint.

    ``https://api.github.com`` maps to ``https://github.com``; an Enterprise
    endpoint such as ``https://ghe.example.com/api/v3`` maps to its host.
    Anything else is returned unchanged.
    """
    endpoint = endpoint.rstrip("/")
    parsed = urlparse(endpoint)
    if parsed.hostname == "api.github.com":
        return GITHUB_HTML_URL
    if parsed.path.endswith("/api/v3"):
        return endpoint[: -len("/api/v3")]
    return endpoint


def _raise_for_server_error(response: httpx.Response) -> httpx.Response:
    if response.status_code >= 500:
        response.raise_for_status()
    return response


class ProviderAPIClient:
    """
    Client for the identity provider's OAuth and profile endpoints.

    Implements the ProviderGateway port. A new HTTP client is opened per call,
    so one instance can be shared for the application's lifetime.
    """

    def __init__(self, redirect_uri: str | None = None, timeout: float = 10.0):
        """
        Initializes the client.

        Args:
            redirect_uri: Loopback callback URL registered with the provider
            timeout: HTTP timeout in seconds
        """
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    def authorization_url(
        self, provider: Provider, endpoint: str, client_id: str, state: str
    ) -> str:
        """Build the authorize URL the browser is sent to."""
        if provider == Provider.GITHUB:
            authorize_url = f"{get_html_url(endpoint)}/login/oauth/authorize"
            scope = GITHUB_SCOPES
        else:
            authorize_url = f"{endpoint.rstrip('/')}/oauth/authorize"
            scope = GITLAB_SCOPES

        return prepare_grant_uri(
            authorize_url,
            client_id,
            "code",
            redirect_uri=self.redirect_uri,
            scope=scope,
            state=state,
        )

    def token_url(self, provider: Provider, endpoint: str) -> str:
        """Get the token endpoint for a provider instance."""
        if provider == Provider.GITHUB:
            return f"{get_html_url(endpoint)}/login/oauth/access_token"
        return f"{endpoint.rstrip('/')}/oauth/token"

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
            The access token, or None if the provider declined to issue one

        Raises:
            ProviderAPIError: On network errors or 5xx responses
        """
        url = self.token_url(provider, endpoint)

        try:
            async with AsyncOAuth2Client(
                client_id=client_id,
                client_secret=client_secret,
                token_endpoint_auth_method="client_secret_post",
                redirect_uri=self.redirect_uri,
                timeout=self.timeout,
            ) as client:
                client.register_compliance_hook(
                    "access_token_response", _raise_for_server_error
                )
                # GitHub checks the state again during the exchange
                token = await client.fetch_token(
                    url,
                    body=url_encode([("state", state)]),
                    grant_type="authorization_code",
                    code=code,
                )
        except OAuthError as e:
            logger.warning(
                f"Token exchange declined by {provider.value}: {e.description or e.error}",
                extra={"provider": provider.value, "endpoint": endpoint},
            )
            return None
        except httpx.HTTPStatusError as e:
            # authlib raises for a non-JSON body; only 5xx is a provider failure
            if e.response.status_code < 500:
                logger.warning(
                    f"Token exchange declined by {provider.value}: {e.response.status_code}",
                    extra={"provider": provider.value, "endpoint": endpoint},
                )
                return None
            raise ProviderAPIError(
                f"Token request failed: {e.response.status_code} {e.response.text}"
            ) from e
        except httpx.RequestError as e:
            raise ProviderAPIError(f"Network error during token request: {e}") from e
        except ValueError as e:
            # Non-JSON body, typically an HTML error page
            logger.warning(
                f"Unreadable token response from {provider.value}: {e}",
                extra={"provider": provider.value, "endpoint": endpoint},
            )
            return None

        access_token = token.get("access_token")
        if not access_token:
            logger.warning(
                f"Token response from {provider.value} has no access_token",
                extra={"provider": provider.value, "endpoint": endpoint},
            )
            return None
        return access_token

    async def fetch_identity(
        self, provider: Provider, endpoint: str, token: str
    ) -> Account:
        """
        Fetch the account the access token belongs to.

        Raises:
            ProviderAuthError: If the token is rejected
            ProviderAPIError: On any other failure
        """
        endpoint = endpoint.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            if provider == Provider.GITHUB:
                headers["Accept"] = "application/vnd.github+json"
                user = await self._get_json(client, f"{endpoint}/user", headers)
                try:
                    emails = await self._get_json(
                        client, f"{endpoint}/user/emails", headers
                    )
                except ProviderAPIError as e:
                    logger.warning(f"Could not fetch emails for account: {e}")
                    emails = []
            else:
                user = await self._get_json(client, f"{endpoint}/api/v4/user", headers)

        try:
            if provider == Provider.GITHUB:
                return Account.from_github_user(endpoint, token, user, emails)
            return Account.from_gitlab_user(endpoint, token, user)
        except (KeyError, TypeError, ValidationError) as e:
            raise ProviderAPIError(f"Invalid profile response from {provider.value}: {e}") from e

    async def _get_json(
        self, client: httpx.AsyncClient, url: str, headers: dict[str, str]
    ) -> Any:
        try:
            response = await client.get(url, headers=headers)

            if response.status_code in (401, 403):
                raise ProviderAuthError(f"Access token rejected ({response.status_code})")

            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Provider API error: {e.response.text}")
            raise ProviderAPIError(f"API error: {e}") from e
        except httpx.RequestError as e:
            logger.error(f"Provider network error: {e}")
            raise ProviderAPIError(f"Network error: {e}") from e
        except ValueError as e:
            raise ProviderAPIError(f"Invalid JSON from {url}: {e}") from e
