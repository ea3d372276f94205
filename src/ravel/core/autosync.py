"""Auto-sync of a package branch with its remote: checkout, pull, push."""

from __future__ import annotations

import logging
from pathlib import Path

from ravel.core.models import SyncResult
from ravel.utils.git import GitBackend, GitCommandError, GitRunner

logger = logging.getLogger(__name__)

FAST_FORWARD_IMPOSSIBLE = "Fast-forward not possible"
_FF_FAILURE_MARKERS = ("not possible to fast-forward", "fatal: not possible to fast-forward", "diverging branches")


def _is_fast_forward_failure(error: GitCommandError) -> bool:
    text = f"{error} {error.stderr}".lower()
    return any(marker in text for marker in _FF_FAILURE_MARKERS)


async def auto_sync_branch(
    path: Path,
    checkout: str | None = None,
    pull: bool = False,
    push: bool = False,
    backend: GitBackend | None = None,
    log: logging.Logger | None = None,
) -> SyncResult:
    """Bring a package branch in line with its remote.

    Steps run strictly in order checkout, pull (fast-forward only), push;
    each is optional. A pull that cannot fast-forward stops the run with
    ``error == "Fast-forward not possible"`` so the caller can fall back to a
    manual merge.

    Args:
        path: Repository checkout.
        checkout: Branch to check out first.
        pull: Pull with ``--ff-only``.
        push: Push the current branch.
        backend: Git backend; defaults to GitRunner.
        log: Logger; defaults to the module logger.

    Returns:
        SyncResult listing the actions that completed.
    """
    backend = backend or GitRunner()
    log = log or logger
    actions: list[str] = []

    try:
        if checkout:
            log.info(f"Checking out {checkout} in {path}...")
            await backend.run(["checkout", checkout], cwd=path)
            actions.append(f"Checked out {checkout}")

        if pull:
            log.info(f"Pulling from remote in {path}...")
            try:
                await backend.run(["pull", "--ff-only"], cwd=path, suppress_error_logging=True)
            except GitCommandError as e:
                if _is_fast_forward_failure(e):
                    log.warning(f"Cannot fast-forward {path}: divergent history, a manual merge is needed")
                    return SyncResult(success=False, actions=actions, error=FAST_FORWARD_IMPOSSIBLE)
                raise
            actions.append("Pulled from remote")

        if push:
            log.info(f"Pushing to remote from {path}...")
            await backend.run(["push"], cwd=path)
            actions.append("Pushed to remote")

    except Exception as e:
        log.error(f"Failed to auto-sync {path}: {e}")
        return SyncResult(success=False, actions=actions, error=str(e))

    return SyncResult(success=True, actions=actions)
