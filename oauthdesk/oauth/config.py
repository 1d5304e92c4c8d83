"""
OAuth2 configuration for the desktop sign-in flow.

Each provider (GitHub, GitLab) is configured independently from the
environment. Providers without credentials are simply unavailable.
"""

import os
import logging
from dataclasses import dataclass
from functools import lru_cache

from oauthdesk.core.domain import Provider
from oauthdesk.infrastructure.oauth_providers import GITHUB_API_URL


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCredentials:
    """Endpoint and OAuth application credentials for one provider."""

    provider: Provider
    endpoint: str
    client_id: str
    client_secret: str


@dataclass
class OAuthConfig:
    """
    OAuth configuration settings.

    Loaded from environment variables. The loopback host and port define
    the redirect URI registered with each provider's OAuth application.
    """

    callback_host: str = "127.0.0.1"
    callback_port: int = 8765

    github_endpoint: str = GITHUB_API_URL
    github_client_id: str | None = None
    github_client_secret: str | None = None

    gitlab_endpoint: str = "https://gitlab.com"
    gitlab_client_id: str | None = None
    gitlab_client_secret: str | None = None

    @classmethod
    def from_env(cls) -> "OAuthConfig":
        """Load configuration from environment variables."""
        return cls(
            callback_host=os.getenv("OAUTHDESK_CALLBACK_HOST", "127.0.0.1"),
            callback_port=int(os.getenv("OAUTHDESK_CALLBACK_PORT", "8765")),
            github_endpoint=os.getenv("GITHUB_ENDPOINT", GITHUB_API_URL),
            github_client_id=os.getenv("GITHUB_CLIENT_ID"),
            github_client_secret=os.getenv("GITHUB_CLIENT_SECRET"),
            gitlab_endpoint=os.getenv("GITLAB_ENDPOINT", "https://gitlab.com"),
            gitlab_client_id=os.getenv("GITLAB_CLIENT_ID"),
            gitlab_client_secret=os.getenv("GITLAB_CLIENT_SECRET"),
        )

    def get_callback_url(self) -> str:
        """Generate the loopback callback URL."""
        return f"http://{self.callback_host}:{self.callback_port}/oauth/callback"

    def is_provider_configured(self, provider: str) -> bool:
        """Check if a provider has valid credentials configured."""
        if provider == Provider.GITHUB:
            return bool(self.github_client_id and self.github_client_secret)
        if provider == Provider.GITLAB:
            return bool(self.gitlab_client_id and self.gitlab_client_secret)
        return False

    def get_configured_providers(self) -> list[str]:
        """List all providers with valid configuration."""
        return [p for p in SUPPORTED_PROVIDERS if self.is_provider_configured(p)]

    def credentials_for(self, provider: str) -> ProviderCredentials:
        """
        Get the endpoint and credentials for a provider.

        Raises:
            ValueError: If the provider is unknown or not configured
        """
        if not self.is_provider_configured(provider):
            raise ValueError(f"Provider '{provider}' is not configured")

        if provider == Provider.GITHUB:
            return ProviderCredentials(
                provider=Provider.GITHUB,
                endpoint=self.github_endpoint,
                client_id=self.github_client_id,
                client_secret=self.github_client_secret,
            )
        return ProviderCredentials(
            provider=Provider.GITLAB,
            endpoint=self.gitlab_endpoint,
            client_id=self.gitlab_client_id,
            client_secret=self.gitlab_client_secret,
        )


@lru_cache()
def get_oauth_config() -> OAuthConfig:
    """Get OAuth configuration singleton."""
    return OAuthConfig.from_env()


# List of supported providers (for validation)
SUPPORTED_PROVIDERS = [p.value for p in Provider]
