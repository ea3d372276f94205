"""Core audit models and pure logic."""

from ravel.core.concurrency import bounded_map
from ravel.core.models import (
    AuditResult,
    BranchStatus,
    Package,
    PackageAudit,
    PullRequestRef,
    SyncResult,
    TargetBranchSyncStatus,
    VersionStatus,
)
from ravel.core.report import format_audit_results
from ravel.core.versions import VersionValidation, validate_version_for_branch

__all__ = [
    "AuditResult",
    "BranchStatus",
    "Package",
    "PackageAudit",
    "PullRequestRef",
    "SyncResult",
    "TargetBranchSyncStatus",
    "VersionStatus",
    "VersionValidation",
    "bounded_map",
    "format_audit_results",
    "validate_version_for_branch",
]
