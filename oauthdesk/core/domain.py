"""
Core domain models for the sign-in handshake.

These models represent the accounts a handshake produces and are
independent of any provider API or delivery mechanism.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Provider(str, Enum):
    """Identity backends a handshake can target."""

    GITHUB = "github"
    GITLAB = "gitlab"


class AccountEmail(BaseModel):
    """An email address attached to an account."""

    email: str = Field(description="Email address")
    verified: bool = Field(default=False, description="Verified by the provider")
    primary: bool = Field(default=False, description="Primary address")
    visibility: str | None = Field(default=None, description="public or private")

    model_config = ConfigDict(extra="allow")


class Account(BaseModel):
    """
    Authenticated account produced by a completed handshake.

    Holds the access token alongside the profile so the caller can
    persist the whole account after sign-in.
    """

    provider: Provider = Field(description="Identity backend")
    endpoint: str = Field(description="API endpoint the account belongs to")
    token: str = Field(description="OAuth access token", repr=False)
    login: str = Field(description="Username on the provider")
    id: int = Field(description="Provider user ID")
    name: str | None = Field(default=None, description="Display name")
    avatar_url: str | None = Field(default=None, description="Avatar image URL")
    emails: list[AccountEmail] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")

    @classmethod
    def from_github_user(
        cls,
        endpoint: str,
        token: str,
        user: dict[str, Any],
        emails: list[dict[str, Any]],
    ) -> "Account":
        """
        Create an Account from GitHub ``/user`` and ``/user/emails`` payloads.

        Args:
            endpoint: The API endpoint the user was fetched from
            token: The access token used for the fetch
            user: Raw ``/user`` payload
            emails: Raw ``/user/emails`` payload (may be empty)

        Returns:
            Account instance
        """
        return cls(
            provider=Provider.GITHUB,
            endpoint=endpoint,
            token=token,
            login=user["login"],
            id=user["id"],
            name=user.get("name"),
            avatar_url=user.get("avatar_url"),
            emails=[AccountEmail.model_validate(e) for e in emails],
        )

    @classmethod
    def from_gitlab_user(
        cls, endpoint: str, token: str, user: dict[str, Any]
    ) -> "Account":
        """Create an Account from a GitLab ``/api/v4/user`` payload."""
        emails = []
        if user.get("email"):
            emails.append(AccountEmail(email=user["email"], verified=True, primary=True))

        return cls(
            provider=Provider.GITLAB,
            endpoint=endpoint,
            token=token,
            login=user["username"],
            id=user["id"],
            name=user.get("name"),
            avatar_url=user.get("avatar_url"),
            emails=emails,
        )

    @property
    def primary_email(self) -> str | None:
        """Get the primary email address, if the provider shared one."""
        for email in self.emails:
            if email.primary:
                return email.email
        return self.emails[0].email if self.emails else None
