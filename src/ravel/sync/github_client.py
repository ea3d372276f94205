"""GitHub API client used to find open pull requests for audited branches.

Uses GITHUB_TOKEN environment variable for authentication.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from ravel.core.models import PullRequestRef

if TYPE_CHECKING:
    from ravel.utils.git import GitBackend

logger = logging.getLogger(__name__)

# GitHub API constants
GITHUB_API_BASE = "https://api.github.com"
DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0  # seconds

# git@github.com:owner/repo.git, https://github.com/owner/repo(.git), ssh://git@github.com/owner/repo
REMOTE_URL_PATTERN = re.compile(r"github\.com[:/]([^/]+)/([^/]+?)(?:\.git)?/?$")


class GitHubClientError(Exception):
    """Base exception for GitHub client errors."""


class GitHubAuthError(GitHubClientError):
    """Authentication with GitHub failed."""


class GitHubRateLimitError(GitHubClientError):
    """GitHub API rate limit exceeded."""

    def __init__(self, message: str, reset_at: int | None = None) -> None:
        super().__init__(message)
        self.reset_at = reset_at  # Unix timestamp when rate limit resets


class GitHubNotFoundError(GitHubClientError):
    """Requested resource not found."""


class GitHubTransportError(GitHubClientError):
    """The API could not be reached (timeouts, connection errors)."""


def parse_github_repo(remote_url: str) -> str | None:
    """Extract 'owner/repo' from a GitHub remote URL."""
    match = REMOTE_URL_PATTERN.search(remote_url.strip())
    if match:
        return f"{match.group(1)}/{match.group(2)}"
    return None


class GitHubClient:
    """Async GitHub API client for pull request lookups.

    Implements rate limit detection and retry logic with exponential backoff.
    """

    def __init__(
        self,
        repo: str,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        api_base: str = GITHUB_API_BASE,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            repo: Repository in 'owner/repo' format.
            token: GitHub token. If None, reads from GITHUB_TOKEN env var.
            timeout: Request timeout in seconds.
            api_base: API root, for GitHub Enterprise.

        Raises:
            GitHubAuthError: If no token is provided or found in environment.
        """
        self.repo = repo
        self.timeout = timeout
        self.api_base = api_base

        self._token = token or os.getenv("GITHUB_TOKEN")
        if not self._token:
            raise GitHubAuthError("No GitHub token provided. Set GITHUB_TOKEN environment variable or pass token parameter.")

        # Build headers - never log the token!
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GitHubClient:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            base_url=self.api_base,
            headers=self._headers,
            timeout=self.timeout,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, ensuring it's initialized."""
        if self._client is None:
            raise RuntimeError("GitHubClient must be used as async context manager")
        return self._client

    @property
    def owner(self) -> str:
        return self.repo.split("/", 1)[0]

    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Raises:
            GitHubAuthError: If authentication fails.
            GitHubRateLimitError: If rate limit is exceeded after retries.
            GitHubNotFoundError: If resource is not found.
            GitHubTransportError: If the API cannot be reached after retries.
            GitHubClientError: For other API errors.
        """
        backoff = INITIAL_BACKOFF

        for attempt in range(MAX_RETRIES):
            try:
                response = await self.client.request(method, endpoint, **kwargs)

                # Handle rate limiting
                if response.status_code in (403, 429):
                    remaining = response.headers.get("X-RateLimit-Remaining", "0")
                    if remaining == "0":
                        reset_at = int(response.headers.get("X-RateLimit-Reset", "0"))
                        if attempt < MAX_RETRIES - 1:
                            wait_time = min(backoff * (2**attempt), 60)
                            logger.warning(f"Rate limit hit, waiting {wait_time:.1f}s (attempt {attempt + 1}/{MAX_RETRIES})")
                            await asyncio.sleep(wait_time)
                            continue
                        raise GitHubRateLimitError(
                            f"GitHub API rate limit exceeded. Resets at {reset_at}",
                            reset_at=reset_at,
                        )

                if response.status_code == 401:
                    raise GitHubAuthError("GitHub authentication failed. Check your token.")

                if response.status_code == 404:
                    raise GitHubNotFoundError(f"Resource not found: {endpoint}")

                if response.status_code >= 400:
                    error_body = response.text
                    logger.error(f"GitHub API error {response.status_code}: {error_body}")
                    raise GitHubClientError(f"GitHub API error {response.status_code}: {error_body[:200]}")

                return response

            except httpx.TimeoutException as e:
                if attempt < MAX_RETRIES - 1:
                    wait_time = backoff * (2**attempt)
                    logger.warning(f"Request timeout, retrying in {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitHubTransportError(f"Request timeout after {MAX_RETRIES} attempts") from e

            except httpx.HTTPError as e:
                if attempt < MAX_RETRIES - 1:
                    wait_time = backoff * (2**attempt)
                    logger.warning(f"HTTP error: {e}, retrying in {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitHubTransportError(f"HTTP error after {MAX_RETRIES} attempts: {e}") from e

        raise GitHubClientError("Max retries exceeded")

    async def find_open_pull_request(self, branch: str) -> PullRequestRef | None:
        """Find an open pull request whose head is ``branch`` in this repo.

        Args:
            branch: Head branch name (without owner prefix).

        Returns:
            The first open pull request, or None.
        """
        endpoint = f"/repos/{self.repo}/pulls"
        response = await self._request(
            "GET",
            endpoint,
            params={"state": "open", "head": f"{self.owner}:{branch}", "per_page": 1},
        )
        pulls = response.json()
        if not pulls:
            return None
        pr = pulls[0]
        return PullRequestRef(html_url=pr["html_url"], number=pr["number"])


class PullRequestFinder:
    """Finds open pull requests for a branch of a local checkout.

    Resolves 'owner/repo' from the checkout's origin URL and keeps one
    GitHubClient per repository for the lifetime of the context manager.
    Lookups that cannot be answered for a repository (not on GitHub, no
    token, 404, rate limit) return None; transport failures propagate as
    GitHubTransportError.
    """

    def __init__(
        self,
        backend: GitBackend,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        api_base: str = GITHUB_API_BASE,
        remote: str = "origin",
    ) -> None:
        self.backend = backend
        self.token = token
        self.timeout = timeout
        self.api_base = api_base
        self.remote = remote
        self._clients: dict[str, GitHubClient] = {}
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> PullRequestFinder:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        for client in self._clients.values():
            await client.__aexit__(None, None, None)
        self._clients.clear()

    async def detect_repo(self, path: Path) -> str | None:
        """Get 'owner/repo' for the checkout at ``path``."""
        try:
            output = await self.backend.run(["remote", "get-url", self.remote], cwd=path, suppress_error_logging=True)
        except Exception as e:
            logger.debug(f"Could not read remote URL in {path}: {e}")
            return None
        return parse_github_repo(output.stdout)

    async def _client_for(self, repo: str) -> GitHubClient:
        async with self._lock:
            client = self._clients.get(repo)
            if client is None:
                client = GitHubClient(repo, token=self.token, timeout=self.timeout, api_base=self.api_base)
                await client.__aenter__()
                self._clients[repo] = client
            return client

    async def find_open_pull_request_by_head_ref(self, branch: str, path: Path) -> PullRequestRef | None:
        """Find the open pull request for ``branch`` of the checkout at ``path``."""
        repo = await self.detect_repo(path)
        if repo is None:
            return None

        try:
            client = await self._client_for(repo)
            return await client.find_open_pull_request(branch)
        except GitHubTransportError:
            raise
        except GitHubClientError as e:
            logger.debug(f"No PR result for {repo}:{branch}: {e}")
            return None
