"""Pull request host integration."""

from ravel.sync.github_client import (
    GitHubAuthError,
    GitHubClient,
    GitHubClientError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubTransportError,
    PullRequestFinder,
)

__all__ = [
    "GitHubAuthError",
    "GitHubClient",
    "GitHubClientError",
    "GitHubNotFoundError",
    "GitHubRateLimitError",
    "GitHubTransportError",
    "PullRequestFinder",
]
