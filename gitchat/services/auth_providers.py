"""
GitHub OAuth provider.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from gitchat.settings import settings


@dataclass
class OAuthUserInfo:
    """User info returned from the OAuth provider."""

    provider: str
    sub: str  # Subject ID from provider
    username: str
    name: str
    profile_url: str
    picture: str | None = None
    extra: dict[str, Any] | None = None


class GitHubOAuthProvider:
    """GitHub OAuth app flow."""

    name = "github"
    authorization_url = "https://github.com/login/oauth/authorize"
    token_url = "https://github.com/login/oauth/access_token"
    userinfo_url = "https://api.github.com/user"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.client_id = settings.github_client_id
        self.client_secret = settings.github_client_secret
        self.redirect_uri = settings.github_redirect_uri
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=10.0)

    def get_authorization_params(self, state: str) -> dict[str, str]:
        return {
            "client_id": self.client_id or "",
            "redirect_uri": self.redirect_uri,
            "scope": "read:user",
            "state": state,
        }

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange authorization code for tokens."""
        async with self._client() as client:
            response = await client.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                },
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            data = response.json()
        if "access_token" not in data:
            raise httpx.HTTPError(data.get("error_description") or "No access token in GitHub response")
        return data

    async def get_user_info(self, access_token: str) -> OAuthUserInfo:
        """Get the authenticated GitHub user."""
        async with self._client() as client:
            response = await client.get(
                self.userinfo_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/vnd.github+json",
                },
            )
            response.raise_for_status()
            data = response.json()

        return OAuthUserInfo(
            provider=self.name,
            sub=str(data["id"]),
            username=data["login"],
            name=data.get("name") or "",
            profile_url=data.get("html_url") or f"https://github.com/{data['login']}",
            picture=data.get("avatar_url"),
            extra=data,
        )


def get_oauth_provider() -> GitHubOAuthProvider | None:
    if not settings.github_oauth_enabled:
        return None
    return GitHubOAuthProvider()
