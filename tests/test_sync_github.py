"""Tests for GitHub pull request lookups.

Tests cover:
- GitHubClient: API wrapper, auth, rate limiting, retries
- parse_github_repo: remote URL formats
- PullRequestFinder: repo detection, client caching, error mapping
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from conftest import FakeGit

from ravel.core.models import PullRequestRef
from ravel.sync.github_client import (
    GitHubAuthError,
    GitHubClient,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubTransportError,
    PullRequestFinder,
    parse_github_repo,
)

REPO = Path("/repo/pkg")

# =============================================================================
# GitHubClient Tests
# =============================================================================


class TestGitHubClientAuth:
    """Test GitHub client authentication."""

    def test_init_with_token_param(self) -> None:
        """Test initialization with explicit token."""
        client = GitHubClient("owner/repo", token="test-token")
        assert client._token == "test-token"
        assert client.repo == "owner/repo"
        assert client.owner == "owner"

    def test_init_with_env_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test initialization with GITHUB_TOKEN env var."""
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        client = GitHubClient("owner/repo")
        assert client._token == "env-token"

    def test_init_missing_token_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that missing token raises GitHubAuthError."""
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with pytest.raises(GitHubAuthError, match="No GitHub token provided"):
            GitHubClient("owner/repo")


class TestGitHubClientContext:
    """Test GitHub client context manager."""

    @pytest.mark.asyncio
    async def test_context_manager_lifecycle(self) -> None:
        """Test async context manager creates and closes client."""
        client = GitHubClient("owner/repo", token="test")

        assert client._client is None

        async with client:
            assert client._client is not None
            assert isinstance(client._client, httpx.AsyncClient)

        assert client._client is None

    def test_client_property_outside_context_raises(self) -> None:
        """Test accessing client outside context raises RuntimeError."""
        client = GitHubClient("owner/repo", token="test")
        with pytest.raises(RuntimeError, match="must be used as async context manager"):
            _ = client.client


class TestFindOpenPullRequest:
    """Test the open pull request query."""

    @pytest.mark.asyncio
    async def test_found(self) -> None:
        pulls = [{"number": 12, "html_url": "https://github.com/owner/repo/pull/12", "title": "WIP"}]

        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: pulls)

            async with GitHubClient("owner/repo", token="test") as client:
                pr = await client.find_open_pull_request("working")

        assert pr == PullRequestRef(html_url="https://github.com/owner/repo/pull/12", number=12)
        mock_request.assert_called_once_with(
            "GET",
            "/repos/owner/repo/pulls",
            params={"state": "open", "head": "owner:working", "per_page": 1},
        )

    @pytest.mark.asyncio
    async def test_none_open(self) -> None:
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: [])

            async with GitHubClient("owner/repo", token="test") as client:
                assert await client.find_open_pull_request("working") is None


class TestGitHubClientErrorHandling:
    """Test GitHub client error handling."""

    @pytest.mark.asyncio
    async def test_auth_error_401(self) -> None:
        """Test 401 response raises GitHubAuthError."""
        mock_response = MagicMock()
        mock_response.status_code = 401

        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = mock_response

            client = GitHubClient("owner/repo", token="bad-token")
            async with client:
                with pytest.raises(GitHubAuthError, match="authentication failed"):
                    await client._request("GET", "/test")

    @pytest.mark.asyncio
    async def test_not_found_404(self) -> None:
        """Test 404 response raises GitHubNotFoundError."""
        mock_response = MagicMock()
        mock_response.status_code = 404

        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = mock_response

            client = GitHubClient("owner/repo", token="test")
            async with client:
                with pytest.raises(GitHubNotFoundError, match="not found"):
                    await client._request("GET", "/test")

    @pytest.mark.asyncio
    async def test_rate_limit_403(self) -> None:
        """Test rate limit response raises GitHubRateLimitError after retries."""
        mock_response = MagicMock()
        mock_response.status_code = 403
        mock_response.headers = {
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": "1234567890",
        }

        with (
            patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request,
            patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            mock_request.return_value = mock_response

            client = GitHubClient("owner/repo", token="test")
            async with client:
                with pytest.raises(GitHubRateLimitError, match="rate limit") as exc_info:
                    await client._request("GET", "/test")

        assert exc_info.value.reset_at == 1234567890
        assert mock_request.await_count == 3
        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_timeout_retries_then_transport_error(self) -> None:
        with (
            patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request,
            patch("asyncio.sleep", new_callable=AsyncMock),
        ):
            mock_request.side_effect = httpx.ReadTimeout("slow")

            async with GitHubClient("owner/repo", token="test") as client:
                with pytest.raises(GitHubTransportError, match="timeout"):
                    await client._request("GET", "/test")

        assert mock_request.await_count == 3

    @pytest.mark.asyncio
    async def test_transient_error_recovers(self) -> None:
        ok = MagicMock()
        ok.status_code = 200

        with (
            patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request,
            patch("asyncio.sleep", new_callable=AsyncMock),
        ):
            mock_request.side_effect = [httpx.ConnectError("refused"), ok]

            async with GitHubClient("owner/repo", token="test") as client:
                response = await client._request("GET", "/test")

        assert response is ok


# =============================================================================
# Remote URL parsing
# =============================================================================


class TestParseGitHubRepo:
    @pytest.mark.parametrize(
        "url",
        [
            "git@github.com:owner/repo.git",
            "https://github.com/owner/repo.git",
            "https://github.com/owner/repo",
            "ssh://git@github.com/owner/repo.git",
            "https://github.com/owner/repo/\n",
        ],
    )
    def test_github_urls(self, url: str) -> None:
        assert parse_github_repo(url) == "owner/repo"

    def test_non_github_url(self) -> None:
        assert parse_github_repo("git@gitlab.com:owner/repo.git") is None


# =============================================================================
# PullRequestFinder Tests
# =============================================================================


class TestPullRequestFinder:
    """Test branch-to-PR lookups for local checkouts."""

    @pytest.mark.asyncio
    async def test_detect_repo(self, fake_git: FakeGit) -> None:
        fake_git.on("remote", "get-url", "origin", stdout="git@github.com:org/pkg.git\n")

        finder = PullRequestFinder(fake_git, token="test")

        assert await finder.detect_repo(REPO) == "org/pkg"

    @pytest.mark.asyncio
    async def test_no_remote_means_no_pr(self, fake_git: FakeGit) -> None:
        async with PullRequestFinder(fake_git, token="test") as finder:
            assert await finder.find_open_pull_request_by_head_ref("working", REPO) is None

    @pytest.mark.asyncio
    async def test_non_github_remote_means_no_pr(self, fake_git: FakeGit) -> None:
        fake_git.on("remote", "get-url", "origin", stdout="https://gitlab.com/org/pkg.git\n")

        async with PullRequestFinder(fake_git, token="test") as finder:
            assert await finder.find_open_pull_request_by_head_ref("working", REPO) is None

    @pytest.mark.asyncio
    async def test_found_and_client_reused(self, fake_git: FakeGit) -> None:
        fake_git.on("remote", "get-url", "origin", stdout="https://github.com/org/pkg.git\n")
        pr = PullRequestRef(html_url="https://github.com/org/pkg/pull/3", number=3)

        with patch.object(GitHubClient, "find_open_pull_request", new_callable=AsyncMock) as mock_find:
            mock_find.return_value = pr

            async with PullRequestFinder(fake_git, token="test") as finder:
                first = await finder.find_open_pull_request_by_head_ref("working", REPO)
                second = await finder.find_open_pull_request_by_head_ref("working", Path("/repo/other"))
                assert len(finder._clients) == 1

            assert finder._clients == {}

        assert first == second == pr
        assert mock_find.await_count == 2

    @pytest.mark.asyncio
    async def test_api_errors_mean_no_pr(self, fake_git: FakeGit) -> None:
        fake_git.on("remote", "get-url", "origin", stdout="https://github.com/org/pkg.git\n")

        with patch.object(GitHubClient, "find_open_pull_request", new_callable=AsyncMock) as mock_find:
            mock_find.side_effect = GitHubRateLimitError("rate limit", reset_at=1)

            async with PullRequestFinder(fake_git, token="test") as finder:
                assert await finder.find_open_pull_request_by_head_ref("working", REPO) is None

    @pytest.mark.asyncio
    async def test_missing_token_means_no_pr(self, fake_git: FakeGit, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        fake_git.on("remote", "get-url", "origin", stdout="https://github.com/org/pkg.git\n")

        async with PullRequestFinder(fake_git) as finder:
            assert await finder.find_open_pull_request_by_head_ref("working", REPO) is None

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, fake_git: FakeGit) -> None:
        fake_git.on("remote", "get-url", "origin", stdout="https://github.com/org/pkg.git\n")

        with patch.object(GitHubClient, "find_open_pull_request", new_callable=AsyncMock) as mock_find:
            mock_find.side_effect = GitHubTransportError("Request timeout after 3 attempts")

            async with PullRequestFinder(fake_git, token="test") as finder:
                with pytest.raises(GitHubTransportError):
                    await finder.find_open_pull_request_by_head_ref("working", REPO)
