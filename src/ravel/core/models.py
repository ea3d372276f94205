"""Core data models for branch-state audits."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

# Branch name sentinels
UNKNOWN_BRANCH = "unknown"  # Probe failed
NON_GIT_BRANCH = "non-git"  # Path is not inside a repository

SENTINEL_BRANCHES = frozenset({UNKNOWN_BRANCH, NON_GIT_BRANCH})


class _Frozen(BaseModel):
    """Base for snapshot records that are never mutated after construction."""

    model_config = ConfigDict(frozen=True)


class Package(_Frozen):
    """A package of the workspace, backed by a repository checkout."""

    name: str
    path: Path


class PullRequestRef(_Frozen):
    """An open pull request found for a branch."""

    html_url: str
    number: int


class BranchStatus(_Frozen):
    """Snapshot of one package's current branch."""

    name: str
    is_on_expected_branch: bool
    expected_branch: str | None = None
    ahead: int = Field(default=0, ge=0)
    behind: int = Field(default=0, ge=0)
    remote_exists: bool = False
    has_merge_conflicts: bool = False
    conflicts_with: str | None = None
    has_open_pr: bool = False
    pr_url: str | None = None
    pr_number: int | None = None

    @model_validator(mode="after")
    def _no_counts_without_remote(self) -> BranchStatus:
        if not self.remote_exists and (self.ahead or self.behind):
            raise ValueError("ahead/behind must be 0 when the remote branch does not exist")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_unpushed_commits(self) -> bool:
        """Local commits not on the remote."""
        return self.ahead > 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def needs_sync(self) -> bool:
        """Remote commits not pulled yet."""
        return self.behind > 0

    @classmethod
    def non_git(cls) -> BranchStatus:
        return cls(name=NON_GIT_BRANCH, is_on_expected_branch=True)

    @classmethod
    def unknown(cls, expected_branch: str | None = None) -> BranchStatus:
        return cls(name=UNKNOWN_BRANCH, is_on_expected_branch=False, expected_branch=expected_branch)


class TargetBranchSyncStatus(_Frozen):
    """Whether the shared target branch is exactly in sync with its remote.

    Attributes:
        exact_match: Both branches exist and point at the same commit
        can_fast_forward: Local is an ancestor of remote (safe to advance)
        needs_reset: Local has diverged and must be hard-reset to remote
        error: Diagnostic when the check itself failed
    """

    target_branch: str
    local_exists: bool = False
    remote_exists: bool = False
    local_sha: str | None = None
    remote_sha: str | None = None
    exact_match: bool = False
    can_fast_forward: bool = False
    needs_reset: bool = False
    error: str | None = None

    @property
    def is_out_of_sync(self) -> bool:
        """Both branches exist but differ."""
        return self.local_exists and self.remote_exists and not self.exact_match

    @property
    def missing_locally(self) -> bool:
        return not self.local_exists and self.remote_exists

    @classmethod
    def non_git(cls, target_branch: str) -> TargetBranchSyncStatus:
        # Nothing to compare outside a repository, treat as a match
        return cls(target_branch=target_branch, exact_match=True)


class VersionStatus(_Frozen):
    """Result of checking a package version against its branch."""

    version: str
    is_valid: bool
    issue: str | None = None
    fix: str | None = None


class PackageAudit(_Frozen):
    """Audit of a single package.

    ``issues`` and ``fixes`` are positionally aligned; ``warnings`` holds
    diagnostics for checks that could not be performed.
    """

    package_name: str
    path: Path
    status: BranchStatus
    version_status: VersionStatus | None = None
    target_branch_sync: TargetBranchSyncStatus | None = None
    issues: list[str] = Field(default_factory=list)
    fixes: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_good(self) -> bool:
        return not self.issues

    @property
    def is_misaligned(self) -> bool:
        """On a real branch other than the expected one."""
        status = self.status
        return status.name not in SENTINEL_BRANCHES and bool(status.expected_branch) and not status.is_on_expected_branch

    @property
    def missing_remote(self) -> bool:
        return self.status.name not in SENTINEL_BRANCHES and not self.status.remote_exists

    @property
    def has_version_issue(self) -> bool:
        return self.version_status is not None and not self.version_status.is_valid

    @property
    def has_target_sync_issue(self) -> bool:
        return self.target_branch_sync is not None and self.target_branch_sync.is_out_of_sync


class AuditResult(_Frozen):
    """Fleet-wide audit result. ``audits`` follows input package order."""

    total_packages: int
    good_packages: int
    issues_found: int
    version_issues: int
    target_branch_sync_issues: int
    expected_branch: str | None = None
    audits: list[PackageAudit] = Field(default_factory=list)

    @classmethod
    def from_audits(cls, audits: list[PackageAudit], expected_branch: str | None = None) -> AuditResult:
        """Derive the aggregate counts from completed audits."""
        return cls(
            total_packages=len(audits),
            good_packages=sum(1 for a in audits if a.is_good),
            issues_found=sum(1 for a in audits if not a.is_good),
            version_issues=sum(1 for a in audits if a.has_version_issue),
            target_branch_sync_issues=sum(1 for a in audits if a.has_target_sync_issue),
            expected_branch=expected_branch,
            audits=audits,
        )


class SyncResult(BaseModel):
    """Outcome of an auto-sync run."""

    success: bool
    actions: list[str] = Field(default_factory=list)
    error: str | None = None
