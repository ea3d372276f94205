"""Git probing for branch-state audits.

All git access goes through a ``GitBackend`` so that command-output parsing
stays in ``RepositoryProber`` and tests can script the backend.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ravel.core.models import (
    UNKNOWN_BRANCH,
    BranchStatus,
    PullRequestRef,
    TargetBranchSyncStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
DEFAULT_REMOTE = "origin"
CONFLICT_MARKERS = ("<<<<<<<", "=======", ">>>>>>>")


class GitCommandError(Exception):
    """A git command exited non-zero, timed out, or could not be started."""

    def __init__(
        self,
        message: str,
        args: Sequence[str] = (),
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr


@dataclass(frozen=True)
class GitOutput:
    """Captured output of a successful git command."""

    stdout: str
    stderr: str = ""


class GitBackend(Protocol):
    """Runs one git command, raising GitCommandError on non-zero exit."""

    async def run(
        self,
        args: Sequence[str],
        cwd: Path,
        suppress_error_logging: bool = False,
    ) -> GitOutput: ...


class PullRequestLookup(Protocol):
    """Finds the open pull request whose head is ``branch``.

    Returns None when there is none (or the host cannot answer for this
    repository); raises only on transport failures.
    """

    async def find_open_pull_request_by_head_ref(self, branch: str, path: Path) -> PullRequestRef | None: ...


class GitRunner:
    """Git backend using asyncio subprocesses."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, git_executable: str = "git") -> None:
        self.timeout = timeout
        self.git_executable = git_executable

    async def run(
        self,
        args: Sequence[str],
        cwd: Path,
        suppress_error_logging: bool = False,
    ) -> GitOutput:
        """Run ``git <args>`` in ``cwd``.

        Raises:
            GitCommandError: On non-zero exit, timeout, or missing git binary.
        """
        command = [self.git_executable, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except (FileNotFoundError, NotADirectoryError) as e:
            raise GitCommandError(f"Could not run {' '.join(command)}: {e}", command) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise GitCommandError(f"TIMEOUT after {self.timeout} seconds: {' '.join(command)}", command) from e

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if process.returncode != 0:
            if not suppress_error_logging:
                logger.error(f"git command failed ({process.returncode}) in {cwd}: {' '.join(command)}: {err.strip()}")
            raise GitCommandError(
                f"Command failed: {' '.join(command)}: {err.strip() or out.strip()}",
                command,
                returncode=process.returncode,
                stderr=err,
            )
        return GitOutput(stdout=out, stderr=err)


# =============================================================================
# Repository roots
# =============================================================================


def get_git_repository_root(path: Path) -> Path | None:
    """Walk upward from ``path`` to the directory holding ``.git``.

    Returns:
        The repository root, or None if ``path`` is not inside a repository.
    """
    try:
        # resolve() raises RuntimeError on symlink loops before Python 3.13
        current = Path(path).resolve()
        for candidate in (current, *current.parents):
            # .git is a directory for normal clones and a file for worktrees/submodules
            if (candidate / ".git").exists():
                return candidate
    except (OSError, RuntimeError) as e:
        logger.debug(f"Could not resolve repository root for {path}: {e}")
    return None


def is_in_git_repository(path: Path) -> bool:
    """Check if ``path`` is inside a git repository."""
    return get_git_repository_root(path) is not None


def group_repository_roots(
    paths: Iterable[Path],
    resolver: Callable[[Path], Path | None] = get_git_repository_root,
) -> list[Path]:
    """Collapse package paths to their unique repository roots.

    Paths whose root cannot be resolved are left out; those packages are still
    audited individually.

    Returns:
        Unique roots in first-seen order.
    """
    roots: dict[Path, None] = {}
    for path in paths:
        try:
            root = resolver(path)
        except (OSError, RuntimeError) as e:
            logger.debug(f"Could not resolve repository root for {path}: {e}")
            continue
        if root is not None:
            roots.setdefault(root, None)
    return list(roots)


def parse_ahead_behind(output: str) -> tuple[int, int]:
    """Parse ``git rev-list --left-right --count origin/B...HEAD`` output.

    The left column counts remote-only commits (behind), the right column
    local-only commits (ahead).

    Returns:
        Tuple of (ahead, behind).

    Raises:
        ValueError: If the output is not two integers.
    """
    parts = output.split()
    if len(parts) != 2:
        raise ValueError(f"Unexpected rev-list output: {output!r}")
    behind, ahead = (int(p) for p in parts)
    return ahead, behind


def has_conflict_markers(merge_tree_output: str) -> bool:
    """Check merge-tree output for conflict markers."""
    return any(marker in merge_tree_output for marker in CONFLICT_MARKERS)


# =============================================================================
# Prober
# =============================================================================


class RepositoryProber:
    """Point queries against a single repository.

    Every operation is independently callable and never raises: failures are
    converted to neutral values and logged.
    """

    def __init__(
        self,
        backend: GitBackend | None = None,
        pr_lookup: PullRequestLookup | None = None,
        remote: str = DEFAULT_REMOTE,
        repo_resolver: Callable[[Path], Path | None] = get_git_repository_root,
        log: logging.Logger | None = None,
    ) -> None:
        self.backend = backend or GitRunner()
        self.pr_lookup = pr_lookup
        self.remote = remote
        self.repo_resolver = repo_resolver
        self.log = log or logger

    def in_repository(self, path: Path) -> bool:
        try:
            return self.repo_resolver(path) is not None
        except (OSError, RuntimeError):
            return False

    async def _git(self, path: Path, *args: str) -> str:
        output = await self.backend.run(args, cwd=path, suppress_error_logging=True)
        return output.stdout

    async def current_branch(self, path: Path) -> str:
        """Get the checked-out branch name, or ``"unknown"`` on any error."""
        try:
            branch = (await self._git(path, "rev-parse", "--abbrev-ref", "HEAD")).strip()
        except Exception as e:
            self.log.debug(f"Could not read current branch for {path}: {e}")
            return UNKNOWN_BRANCH
        return branch or UNKNOWN_BRANCH

    async def remote_branch_exists(self, path: Path, branch: str) -> bool:
        """Check whether ``branch`` exists on the remote."""
        try:
            await self._git(path, "ls-remote", "--exit-code", "--heads", self.remote, branch)
        except Exception:
            return False
        return True

    async def ahead_behind(self, path: Path, branch: str) -> tuple[int, int]:
        """Count commits ahead of and behind the remote tracking branch.

        Returns:
            Tuple of (ahead, behind); (0, 0) when it cannot be determined.
        """
        try:
            output = await self._git(path, "rev-list", "--left-right", "--count", f"{self.remote}/{branch}...HEAD")
            return parse_ahead_behind(output)
        except Exception as e:
            self.log.warning(f"Could not get ahead/behind counts for {path}: {e}")
            return 0, 0

    async def merge_conflict_probe(self, path: Path, branch: str, target_branch: str) -> bool:
        """Check whether merging the remote target into ``branch`` would conflict.

        Uses ``git merge-tree`` against the merge base, which computes the
        merge in memory and never touches the working tree or index.
        """
        target_ref = f"{self.remote}/{target_branch}"
        try:
            base = (await self._git(path, "merge-base", branch, target_ref)).strip()
            if not base:
                return False
            merge_tree = await self._git(path, "merge-tree", base, branch, target_ref)
        except Exception as e:
            self.log.debug(f"Could not check merge conflicts for {path}: {e}")
            return False

        if has_conflict_markers(merge_tree):
            self.log.info(f"Merge conflicts detected between {branch} and {target_ref} in {path}")
            return True
        return False

    async def local_sha(self, path: Path, branch: str) -> str | None:
        try:
            sha = (await self._git(path, "rev-parse", "--verify", branch)).strip()
        except Exception:
            return None
        return sha or None

    async def remote_sha(self, path: Path, branch: str) -> str | None:
        try:
            output = await self._git(path, "ls-remote", self.remote, branch)
        except Exception:
            return None
        tokens = output.split()
        return tokens[0] if tokens else None

    async def target_branch_shas(self, path: Path, target_branch: str) -> tuple[str | None, str | None]:
        """Get (local_sha, remote_sha) for the target branch; either may be None."""
        return await self.local_sha(path, target_branch), await self.remote_sha(path, target_branch)

    async def is_ancestor(self, path: Path, ancestor: str, descendant: str) -> bool:
        try:
            await self._git(path, "merge-base", "--is-ancestor", ancestor, descendant)
        except Exception:
            return False
        return True

    async def fetch_remote(self, path: Path) -> bool:
        """Fetch from the remote. Returns False (and logs) on failure."""
        try:
            await self._git(path, "fetch", self.remote, "--quiet")
        except Exception as e:
            self.log.debug(f"Could not fetch in {path}: {e}")
            return False
        return True

    async def find_open_pr(self, branch: str, path: Path) -> tuple[PullRequestRef | None, str | None]:
        """Look up an open pull request for ``branch``.

        Returns:
            Tuple of (pull request or None, warning for transport failures).
        """
        if self.pr_lookup is None:
            return None, None

        try:
            return await self.pr_lookup.find_open_pull_request_by_head_ref(branch, path), None
        except Exception as e:
            self.log.warning(f"Could not check for PR for {path}: {e}")
            return None, f"Could not check for open PR: {e}"

    # =========================================================================
    # Composite checks
    # =========================================================================

    async def check_branch_status(
        self,
        path: Path,
        expected_branch: str | None = None,
        target_branch: str = "main",
        check_pr: bool = False,
        check_conflicts: bool = True,
        skip_fetch: bool = False,
    ) -> tuple[BranchStatus, list[str]]:
        """Build a BranchStatus for the package at ``path``.

        Returns:
            Tuple of (status, warnings).
        """
        warnings: list[str] = []

        if not self.in_repository(path):
            self.log.debug(f"Path is not in a git repository: {path}. Skipping branch status check.")
            return BranchStatus.non_git(), warnings

        branch = await self.current_branch(path)
        if branch == UNKNOWN_BRANCH:
            warnings.append("Could not determine current branch")
            return BranchStatus.unknown(expected_branch), warnings

        remote_exists = await self.remote_branch_exists(path, branch)
        ahead, behind = await self.ahead_behind(path, branch) if remote_exists else (0, 0)

        has_conflicts = False
        if check_conflicts and branch != target_branch:
            if not skip_fetch:
                await self.fetch_remote(path)
            has_conflicts = await self.merge_conflict_probe(path, branch, target_branch)

        pr: PullRequestRef | None = None
        if check_pr:
            pr, pr_warning = await self.find_open_pr(branch, path)
            if pr_warning:
                warnings.append(pr_warning)

        status = BranchStatus(
            name=branch,
            is_on_expected_branch=not expected_branch or branch == expected_branch,
            expected_branch=expected_branch,
            ahead=ahead,
            behind=behind,
            remote_exists=remote_exists,
            has_merge_conflicts=has_conflicts,
            conflicts_with=target_branch if has_conflicts else None,
            has_open_pr=pr is not None,
            pr_url=pr.html_url if pr else None,
            pr_number=pr.number if pr else None,
        )
        return status, warnings

    async def check_target_branch_sync(
        self,
        path: Path,
        target_branch: str = "main",
        skip_fetch: bool = False,
    ) -> TargetBranchSyncStatus:
        """Check whether the local target branch exactly matches the remote."""
        if not self.in_repository(path):
            return TargetBranchSyncStatus.non_git(target_branch)

        try:
            if not skip_fetch:
                await self.fetch_remote(path)

            local_sha, remote_sha = await self.target_branch_shas(path, target_branch)
            local_exists = local_sha is not None
            remote_exists = remote_sha is not None
            exact_match = local_exists and remote_exists and local_sha == remote_sha

            can_fast_forward = False
            needs_reset = False
            if local_exists and remote_exists and not exact_match:
                can_fast_forward = await self.is_ancestor(path, target_branch, f"{self.remote}/{target_branch}")
                needs_reset = not can_fast_forward

            return TargetBranchSyncStatus(
                target_branch=target_branch,
                local_exists=local_exists,
                remote_exists=remote_exists,
                local_sha=local_sha,
                remote_sha=remote_sha,
                exact_match=exact_match,
                can_fast_forward=can_fast_forward,
                needs_reset=needs_reset,
            )
        except Exception as e:
            return TargetBranchSyncStatus(target_branch=target_branch, error=str(e))


__all__ = [
    "GitBackend",
    "GitCommandError",
    "GitOutput",
    "GitRunner",
    "PullRequestLookup",
    "RepositoryProber",
    "get_git_repository_root",
    "group_repository_roots",
    "has_conflict_markers",
    "is_in_git_repository",
    "parse_ahead_behind",
]
