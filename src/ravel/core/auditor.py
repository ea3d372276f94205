"""Fleet-wide branch-state auditor.

The audit runs in three phases, each completing before the next starts:

1. Determine the expected branch (most common current branch) unless given.
2. Fetch once per unique repository root.
3. Audit every package: target-branch sync, branch status, version check,
   then derive issues and fix commands.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable, Sequence
from pathlib import Path

from ravel.config import AuditOptions
from ravel.core.concurrency import bounded_map
from ravel.core.models import (
    NON_GIT_BRANCH,
    SENTINEL_BRANCHES,
    UNKNOWN_BRANCH,
    AuditResult,
    BranchStatus,
    Package,
    PackageAudit,
    TargetBranchSyncStatus,
    VersionStatus,
)
from ravel.core.versions import validate_version_for_branch
from ravel.utils.git import RepositoryProber, group_repository_roots
from ravel.utils.manifest import Manifest, read_manifest

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 5


def most_common_branch(branch_names: Sequence[str], fallback: str = "main") -> tuple[str, int]:
    """Pick the branch most packages are on.

    Sentinel names are ignored; ties go to the branch seen first.

    Returns:
        Tuple of (branch, count). Count is 0 when the fallback was used.
    """
    counts = Counter(name for name in branch_names if name not in SENTINEL_BRANCHES)
    best, best_count = fallback, 0
    # Counter keeps first-seen order, strict > keeps the earliest on ties
    for name, count in counts.items():
        if count > best_count:
            best, best_count = name, count
    return best, best_count


def derive_issues(
    package: Package,
    status: BranchStatus,
    target_sync: TargetBranchSyncStatus | None,
    version_status: VersionStatus | None,
    expected_branch: str | None,
    check_conflicts: bool = True,
    check_pr: bool = True,
) -> tuple[list[str], list[str]]:
    """Derive issues and their fix commands, in a fixed order.

    Returns:
        Tuple of (issues, fixes), positionally aligned.
    """
    issues: list[str] = []
    fixes: list[str] = []
    path = package.path
    branch = status.name
    on_real_branch = branch not in SENTINEL_BRANCHES

    if on_real_branch:
        if not status.is_on_expected_branch and expected_branch:
            issues.append(f"On branch '{branch}' (most packages are on '{expected_branch}')")
            fixes.append(f"cd {path} && git checkout {expected_branch}")

        if check_conflicts and status.has_merge_conflicts and status.conflicts_with:
            issues.append(f"MERGE CONFLICTS with '{status.conflicts_with}'")
            fixes.append(f"cd {path} && git merge origin/{status.conflicts_with}  # Resolve conflicts manually")

        if check_pr and status.has_open_pr:
            issues.append(f"Has existing PR #{status.pr_number}: {status.pr_url}")
            fixes.append(f"# Review PR: {status.pr_url}")

        if status.has_unpushed_commits:
            issues.append(f"Ahead of remote by {status.ahead} commit(s)")
            fixes.append(f"cd {path} && git push origin {branch}")

        if status.needs_sync:
            issues.append(f"Behind remote by {status.behind} commit(s)")
            fixes.append(f"cd {path} && git pull origin {branch}")

        if not status.remote_exists:
            issues.append("Remote branch does not exist")
            fixes.append(f"cd {path} && git push -u origin {branch}")

    if version_status is not None and not version_status.is_valid:
        issues.append(f"Version: {version_status.version} - {version_status.issue}")
        fixes.append(f"cd {path}  # {version_status.fix}")

    if target_sync is not None:
        target = target_sync.target_branch
        back = f" && git checkout {branch}" if on_real_branch else ""
        if target_sync.is_out_of_sync:
            if target_sync.needs_reset:
                issues.append(f"Target branch '{target}' is NOT in sync with remote (local has diverged)")
                fixes.append(f"cd {path} && git checkout {target} && git reset --hard origin/{target}{back}")
            elif target_sync.can_fast_forward:
                issues.append(f"Target branch '{target}' is behind remote (can fast-forward)")
                fixes.append(f"cd {path} && git checkout {target} && git pull origin {target}{back}")
            else:
                issues.append(f"Target branch '{target}' is NOT in exact sync with remote")
                fixes.append(f"cd {path} && git checkout {target} && git pull origin {target}{back}")
        elif target_sync.missing_locally:
            issues.append(f"Target branch '{target}' does not exist locally (exists on remote)")
            fixes.append(f"cd {path} && git branch {target} origin/{target}")

    return issues, fixes


class BranchAuditor:
    """Audits branch state across the packages of a workspace."""

    def __init__(
        self,
        prober: RepositoryProber,
        options: AuditOptions | None = None,
        manifest_reader: Callable[[Path], Manifest] = read_manifest,
        log: logging.Logger | None = None,
    ) -> None:
        self.prober = prober
        self.options = options or AuditOptions()
        self.manifest_reader = manifest_reader
        self.log = log or logger

    async def audit(self, packages: Sequence[Package], expected_branch: str | None = None) -> AuditResult:
        """Audit every package and aggregate the results.

        Never raises for per-package failures; always returns one
        PackageAudit per input package, in input order.

        Args:
            packages: Packages to audit.
            expected_branch: Branch every package should be on. Overrides
                the options; detected from the fleet when neither is set.

        Returns:
            AuditResult with counts and per-package audits.
        """
        opts = self.options
        expected = expected_branch or opts.expected_branch
        self.log.info(f"Auditing branch state for {len(packages)} package(s) (concurrency {opts.concurrency})")

        if not expected:
            expected = await self._detect_expected_branch(packages)

        await self._fetch_repositories(packages)

        self.log.info("Phase 3/3: Auditing package state (git status, conflicts, PRs, versions)...")
        completed = 0

        async def audit_one(package: Package, _index: int) -> PackageAudit:
            nonlocal completed
            result = await self._audit_package(package, expected)
            completed += 1
            if completed % PROGRESS_EVERY == 0 or completed == len(packages):
                self.log.info(f"  Progress: {completed}/{len(packages)} packages audited")
            return result

        audits = await bounded_map(packages, audit_one, opts.concurrency)
        result = AuditResult.from_audits(audits, expected_branch=expected)

        self.log.info(f"Audit complete: {result.good_packages}/{result.total_packages} packages have no issues")
        if result.issues_found:
            self.log.info(f"  Issues found in {result.issues_found} package(s)")
        return result

    async def _detect_expected_branch(self, packages: Sequence[Package]) -> str:
        self.log.info("Phase 1/3: Detecting most common branch across packages...")

        async def branch_of(package: Package, _index: int) -> str:
            if not self.prober.in_repository(package.path):
                return NON_GIT_BRANCH
            return await self.prober.current_branch(package.path)

        names = await bounded_map(packages, branch_of, self.options.concurrency)
        branch, count = most_common_branch(names, fallback=self.options.fallback_branch)
        self.log.info(f"Most common branch: {branch} ({count}/{len(packages)} packages)")
        return branch

    async def _fetch_repositories(self, packages: Sequence[Package]) -> None:
        self.log.info("Phase 2/3: Fetching latest from remotes (one fetch per repository)...")
        roots = group_repository_roots((p.path for p in packages), resolver=self.prober.repo_resolver)

        async def fetch(root: Path, index: int) -> bool:
            self.log.debug(f"  [{index + 1}/{len(roots)}] Fetching in: {root}")
            return await self.prober.fetch_remote(root)

        fetched = await bounded_map(roots, fetch, self.options.concurrency)
        failed = fetched.count(False)
        self.log.info(f"Fetched latest information for {len(roots)} unique repositories")
        if failed:
            self.log.warning(f"  {failed} fetch(es) failed; auditing against local state for those repositories")

    async def _audit_package(self, package: Package, expected_branch: str) -> PackageAudit:
        opts = self.options
        warnings: list[str] = []

        try:
            target_sync = await self.prober.check_target_branch_sync(package.path, opts.target_branch, skip_fetch=True)
            status, status_warnings = await self.prober.check_branch_status(
                package.path,
                expected_branch=expected_branch,
                target_branch=opts.target_branch,
                check_pr=opts.check_pr,
                check_conflicts=opts.check_conflicts,
                skip_fetch=True,
            )
        except Exception as e:
            # Prober operations degrade on their own; this guards custom backends
            self.log.error(f"Error auditing {package.name}: {e}")
            return PackageAudit(
                package_name=package.name,
                path=package.path,
                status=BranchStatus.unknown(expected_branch),
                warnings=[f"Audit failed: {e}"],
            )

        warnings.extend(status_warnings)
        if target_sync.error:
            warnings.append(f"Could not check target branch sync: {target_sync.error}")

        if status.name == NON_GIT_BRANCH:
            return PackageAudit(
                package_name=package.name,
                path=package.path,
                status=status,
                target_branch_sync=target_sync,
                warnings=warnings,
            )

        version_status: VersionStatus | None = None
        if opts.check_versions and status.name != UNKNOWN_BRANCH:
            version_status = await self._check_version(package, status.name, warnings)

        issues, fixes = derive_issues(
            package,
            status,
            target_sync,
            version_status,
            expected_branch,
            check_conflicts=opts.check_conflicts,
            check_pr=opts.check_pr,
        )
        return PackageAudit(
            package_name=package.name,
            path=package.path,
            status=status,
            version_status=version_status,
            target_branch_sync=target_sync,
            issues=issues,
            fixes=fixes,
            warnings=warnings,
        )

    async def _check_version(self, package: Package, branch: str, warnings: list[str]) -> VersionStatus | None:
        try:
            manifest = await asyncio.to_thread(self.manifest_reader, package.path)
        except Exception as e:
            self.log.debug(f"Could not check version for {package.name}: {e}")
            warnings.append(f"Could not check version: {e}")
            return None

        if not manifest.version:
            warnings.append(f"No version declared in {manifest.path.name}")
            return None

        if not isinstance(manifest.version, str):
            warnings.append(f"Could not check version: {manifest.version!r} in {manifest.path.name} is not a string")
            return None

        validation = validate_version_for_branch(manifest.version, branch)
        return VersionStatus(
            version=manifest.version,
            is_valid=validation.valid,
            issue=validation.issue,
            fix=validation.fix,
        )
