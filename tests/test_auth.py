"""Tests for GitHub OAuth login and session handling."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from sqlalchemy import func, select

from gitchat.db import async_session_maker
from gitchat.models import User
from gitchat.routers import auth as auth_router
from gitchat.services.auth_providers import GitHubOAuthProvider
from gitchat.settings import settings

from conftest import cookie


def github_api(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/login/oauth/access_token":
        return httpx.Response(200, json={"access_token": "gho_test", "token_type": "bearer"})
    if request.url.path == "/user":
        assert request.headers["Authorization"] == "Bearer gho_test"
        return httpx.Response(200, json={
            "id": 583231,
            "login": "octocat",
            "name": "The Octocat",
            "html_url": "https://github.com/octocat",
            "avatar_url": "https://avatars.githubusercontent.com/u/583231",
        })
    return httpx.Response(404)


@pytest.fixture
def github(monkeypatch):
    monkeypatch.setattr(settings, "github_client_id", "client-id")
    monkeypatch.setattr(settings, "github_client_secret", "client-secret")
    monkeypatch.setattr(
        auth_router,
        "get_oauth_provider",
        lambda: GitHubOAuthProvider(transport=httpx.MockTransport(github_api)),
    )


def session_cookie(response: httpx.Response) -> str | None:
    for header in response.headers.get_list("set-cookie"):
        name, _, rest = header.partition("=")
        if name == "session_token":
            return rest.split(";", 1)[0]
    return None


class TestGitHubProvider:
    """Test the provider against a stubbed GitHub."""

    async def test_exchange_and_user_info(self, monkeypatch):
        monkeypatch.setattr(settings, "github_client_id", "client-id")
        provider = GitHubOAuthProvider(transport=httpx.MockTransport(github_api))

        tokens = await provider.exchange_code("abc")
        info = await provider.get_user_info(tokens["access_token"])

        assert info.username == "octocat"
        assert info.sub == "583231"
        assert info.picture.startswith("https://avatars.githubusercontent.com/")

    async def test_missing_access_token(self):
        provider = GitHubOAuthProvider(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"error_description": "bad code"})
            )
        )
        with pytest.raises(httpx.HTTPError):
            await provider.exchange_code("bad")

    def test_authorization_params(self, monkeypatch):
        monkeypatch.setattr(settings, "github_client_id", "client-id")
        params = GitHubOAuthProvider().get_authorization_params("state-1")
        assert params["client_id"] == "client-id"
        assert params["state"] == "state-1"


class TestLoginFlow:
    """Test the redirect/callback routes."""

    def test_login_redirects_to_github(self, client, github):
        response = client.get("/auth/github/login", follow_redirects=False)

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.netloc == "github.com"
        query = parse_qs(location.query)
        assert query["client_id"] == ["client-id"]
        assert any(h.startswith("oauth_state=") for h in response.headers.get_list("set-cookie"))

    def test_login_unconfigured(self, client, monkeypatch):
        monkeypatch.setattr(auth_router, "get_oauth_provider", lambda: None)
        response = client.get("/auth/github/login", headers={"Accept": "application/json"}, follow_redirects=False)
        assert response.status_code == 400

    def test_callback_creates_user_and_session(self, client, github):
        response = client.get(
            "/auth/github/callback",
            params={"code": "abc", "state": "s1"},
            headers={"Cookie": "oauth_state=s1"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        token = session_cookie(response)
        assert token

        check = client.get("/auth/check", headers=cookie(token))
        assert check.json()["user"]["username"] == "octocat"
        assert check.json()["user"]["avatarUrl"].startswith("https://avatars.githubusercontent.com/")

    def test_callback_rejects_state_mismatch(self, client, github):
        response = client.get(
            "/auth/github/callback",
            params={"code": "abc", "state": "forged"},
            headers={"Cookie": "oauth_state=s1"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert "error" in response.headers["location"]
        assert session_cookie(response) is None

    def test_second_login_reuses_user(self, client, github):
        for _ in range(2):
            client.get(
                "/auth/github/callback",
                params={"code": "abc", "state": "s1"},
                headers={"Cookie": "oauth_state=s1"},
                follow_redirects=False,
            )

        assert client.portal.call(_count_users) == 1


class TestSession:
    """Test check and logout."""

    def test_check_anonymous(self, client):
        assert client.get("/auth/check").json() == {"user": None}

    def test_logout_ends_session(self, client, make_user):
        token = make_user("alice")
        assert client.get("/auth/check", headers=cookie(token)).json()["user"]["username"] == "alice"

        response = client.post("/auth/logout", headers=cookie(token))
        assert response.json() == {"success": True}

        assert client.get("/auth/check", headers=cookie(token)).json() == {"user": None}


async def _count_users() -> int:
    async with async_session_maker() as db:
        result = await db.execute(select(func.count(User.id)))
        return result.scalar_one()
