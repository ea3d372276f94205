"""Human-readable remediation report for branch-state audits."""

from __future__ import annotations

from collections import Counter

from ravel.core.models import SENTINEL_BRANCHES, AuditResult, PackageAudit

BOX_WIDTH = 64
RULE = "━" * (BOX_WIDTH - 2)
THIN_RULE = "─" * (BOX_WIDTH - 2)

CONFLICT_WEIGHT = 1000
PR_WEIGHT = 100


def _plural(count: int, singular: str, plural: str | None = None) -> str:
    word = singular if count == 1 else (plural or f"{singular}s")
    return f"{count} {word}"


def _box_line(text: str) -> str:
    return f"║  {text}".ljust(BOX_WIDTH - 1) + "║"


def severity_score(audit: PackageAudit) -> int:
    """Sort key weight: merge conflicts first, then open PRs."""
    score = 0
    if audit.status.has_merge_conflicts:
        score += CONFLICT_WEIGHT
    if audit.status.has_open_pr:
        score += PR_WEIGHT
    return score


def dominant_branch(result: AuditResult) -> tuple[str | None, int]:
    """Get the branch most audited packages are on, first-seen on ties."""
    counts = Counter(audit.status.name for audit in result.audits)
    branch, best = None, 0
    for name, count in counts.items():
        if count > best:
            branch, best = name, count
    return branch, best


def _issue_icon(issue: str) -> str:
    if "MERGE CONFLICTS" in issue:
        return "⚠"
    if "PR #" in issue:
        return "●"
    return "✗"


def _target_sync_fix(audit: PackageAudit) -> str:
    sync = audit.target_branch_sync
    assert sync is not None
    back = "" if audit.status.name in SENTINEL_BRANCHES else f" && git checkout {audit.status.name}"
    if sync.needs_reset:
        return f"cd {audit.path} && git checkout {sync.target_branch} && git reset --hard origin/{sync.target_branch}{back}"
    return f"cd {audit.path} && git checkout {sync.target_branch} && git pull origin {sync.target_branch}{back}"


def _header(result: AuditResult) -> list[str]:
    lines = ["╔" + "═" * (BOX_WIDTH - 2) + "╗", _box_line(f"Branch State Audit ({_plural(result.total_packages, 'package')})")]
    branch, count = dominant_branch(result)
    if branch and count == result.total_packages:
        lines.append(_box_line(f"All packages on: {branch}"))
    elif branch:
        lines.append(_box_line(f"Most packages on: {branch} ({count}/{result.total_packages})"))
    lines.append("╠" + "═" * (BOX_WIDTH - 2) + "╣")
    lines.append("")
    return lines


def _good_section(result: AuditResult, limit: int) -> list[str]:
    good = [a for a in result.audits if a.is_good]
    if not good:
        return []
    lines = [f"✓ Good State ({_plural(len(good), 'package')}):"]
    for audit in good[:limit]:
        version = f" (v{audit.version_status.version})" if audit.version_status else ""
        lines.append(f"   {audit.package_name}{version}")
    if len(good) > limit:
        lines.append(f"   ... and {len(good) - limit} more")
    lines.append("")
    return lines


def _version_section(result: AuditResult) -> list[str]:
    audits = [a for a in result.audits if a.has_version_issue]
    if not audits:
        return []
    lines = [f"⚠ Version Issues ({_plural(len(audits), 'package')}):"]
    for audit in audits:
        vs = audit.version_status
        assert vs is not None
        lines.extend(
            [
                f"   {audit.package_name}",
                f"   - Branch: {audit.status.name}",
                f"   - Version: {vs.version}",
                f"   - Issue: {vs.issue}",
                f"   - Fix: {vs.fix}",
                "",
            ]
        )
    return lines


def _target_sync_section(result: AuditResult) -> list[str]:
    audits = [a for a in result.audits if a.has_target_sync_issue]
    if not audits:
        return []
    count = _plural(len(audits), "package")
    lines = [
        f"✗ Target Branch Sync Issues ({count}):",
        f"   {count} with target branch NOT in sync with remote",
        "   Comparisons against a stale target branch are unreliable; fix these first.",
        "",
    ]
    for audit in audits:
        sync = audit.target_branch_sync
        assert sync is not None
        lines.append(f"   {audit.package_name}")
        lines.append(f"   - Target Branch: {sync.target_branch}")
        lines.append(f"   - Local SHA:  {(sync.local_sha or '')[:8]}...")
        lines.append(f"   - Remote SHA: {(sync.remote_sha or '')[:8]}...")
        if sync.needs_reset:
            lines.append("   - Action: RESET REQUIRED (local has diverged)")
        elif sync.can_fast_forward:
            lines.append("   - Action: Pull to fast-forward")
        lines.append("")
    return lines


def _warnings_section(result: AuditResult) -> list[str]:
    audits = [a for a in result.audits if a.warnings]
    if not audits:
        return []
    lines = [f"? Could Not Check ({_plural(len(audits), 'package')}):"]
    for audit in audits:
        for warning in audit.warnings:
            lines.append(f"   {audit.package_name}: {warning}")
    lines.append("")
    return lines


def _package_details(audit: PackageAudit, position: int, total: int) -> list[str]:
    status = audit.status
    critical = status.has_merge_conflicts or status.has_open_pr
    prefix = "CRITICAL" if critical else "WARNING"
    lines = [
        f"{prefix} [{position}/{total}] {audit.package_name}",
        f"Location: {audit.path}",
        f"Branch: {status.name}",
    ]
    # Sentinel branches carry no remote facts
    if audit.missing_remote:
        lines.append("Remote: Does not exist")
    elif status.remote_exists and (status.ahead or status.behind):
        sync = []
        if status.ahead:
            sync.append(f"ahead {status.ahead}")
        if status.behind:
            sync.append(f"behind {status.behind}")
        lines.append(f"Sync: {', '.join(sync)}")

    lines.append("")
    lines.append("Issues:")
    lines.extend(f"  {_issue_icon(issue)} {issue}" for issue in audit.issues)
    lines.append("")
    lines.append("Fix Commands (execute in order):")
    lines.extend(f"  {i}. {fix}" for i, fix in enumerate(audit.fixes, start=1))

    if status.has_merge_conflicts:
        lines.extend(
            [
                "",
                "  Merge Conflict Resolution:",
                "     After running the merge command above, you will need to:",
                "     a) Manually edit conflicting files to resolve conflicts",
                "     b) Stage resolved files: git add <file>",
                "     c) Complete the merge: git commit",
                f"     d) Push the resolved merge: git push origin {status.name}",
            ]
        )

    if status.has_open_pr:
        lines.extend(
            [
                "",
                "  Existing PR Handling:",
                "     a) Continue with the existing PR",
                "     b) Close the PR if no longer needed",
                "     c) Merge the PR if ready, then create a new one",
            ]
        )

    lines.extend(["", THIN_RULE, ""])
    return lines


def _workflow(result: AuditResult, ordered: list[PackageAudit]) -> list[str]:
    """Numbered remediation steps; target-branch sync always comes first."""
    steps: list[tuple[str, list[str]]] = []

    target = [a for a in result.audits if a.has_target_sync_issue]
    if target:
        steps.append(
            (
                "SYNC TARGET BRANCHES (CRITICAL - do this first):",
                [f"   • {a.package_name}: {_target_sync_fix(a)}" for a in target],
            )
        )

    conflicts = [a for a in ordered if a.status.has_merge_conflicts]
    if conflicts:
        body = [f"   • {a.package_name}: cd {a.path} && git merge origin/{a.status.conflicts_with}" for a in conflicts]
        body.append("   Then resolve conflicts, commit, and push.")
        steps.append(("RESOLVE MERGE CONFLICTS (blocking):", body))

    versions = [a for a in ordered if a.has_version_issue]
    if versions:
        steps.append(
            (
                "FIX VERSION ISSUES (recommended before publish):",
                [f"   • {a.package_name}: {a.version_status.fix}" for a in versions if a.version_status],
            )
        )

    prs = [a for a in ordered if a.status.has_open_pr]
    if prs:
        body = []
        for a in prs:
            body.append(f"   • {a.package_name}: Review {a.status.pr_url}")
            body.append("     Option: Continue (publish reuses the PR) or close/merge it first")
        steps.append(("HANDLE EXISTING PRS:", body))

    misaligned = [a for a in ordered if a.is_misaligned]
    if misaligned:
        steps.append(
            (
                "ALIGN BRANCHES (if needed):",
                [f"   • {a.package_name}: cd {a.path} && git checkout {a.status.expected_branch}" for a in misaligned],
            )
        )

    behind = [a for a in ordered if a.status.needs_sync and not a.status.has_merge_conflicts]
    if behind:
        steps.append(
            (
                "SYNC WITH REMOTE:",
                [f"   • {a.package_name}: cd {a.path} && git pull origin {a.status.name}" for a in behind],
            )
        )

    ahead = [a for a in ordered if a.status.has_unpushed_commits and not a.status.has_merge_conflicts]
    if ahead:
        steps.append(
            (
                "PUSH LOCAL COMMITS:",
                [f"   • {a.package_name}: cd {a.path} && git push origin {a.status.name}" for a in ahead],
            )
        )

    no_remote = [a for a in ordered if a.missing_remote]
    if no_remote:
        steps.append(
            (
                "CREATE REMOTE BRANCHES:",
                [f"   • {a.package_name}: cd {a.path} && git push -u origin {a.status.name}" for a in no_remote],
            )
        )

    lines = [RULE, "RECOMMENDED WORKFLOW:", RULE, ""]
    for number, (title, body) in enumerate(steps, start=1):
        lines.append(f"{number}. {title}")
        lines.extend(body)
        lines.append("")
    return lines


def format_audit_results(
    result: AuditResult,
    good_display_limit: int = 5,
    rerun_command: str = "ravel audit",
    publish_command: str | None = None,
) -> str:
    """Render an audit result as a priority-ordered action plan.

    Args:
        result: Audit to render.
        good_display_limit: Good packages listed before "... and N more".
        rerun_command: Command suggested to verify fixes.
        publish_command: Command suggested once everything is clear.

    Returns:
        The report text.
    """
    lines = _header(result)
    lines.extend(_good_section(result, good_display_limit))
    lines.extend(_version_section(result))
    lines.extend(_target_sync_section(result))
    lines.extend(_warnings_section(result))

    if result.issues_found > 0:
        with_issues = [a for a in result.audits if a.issues]
        conflict_count = sum(1 for a in with_issues if a.status.has_merge_conflicts)
        pr_count = sum(1 for a in with_issues if a.status.has_open_pr)
        misaligned_count = sum(1 for a in with_issues if a.is_misaligned)
        ahead_count = sum(1 for a in with_issues if a.status.has_unpushed_commits)
        behind_count = sum(1 for a in with_issues if a.status.needs_sync)
        no_remote_count = sum(1 for a in with_issues if a.missing_remote)
        sync_count = result.target_branch_sync_issues

        if conflict_count or pr_count or sync_count:
            lines.append("CRITICAL ISSUES:")
            if sync_count:
                lines.append(f"   {_plural(sync_count, 'package')} with target branch sync issues")
            if conflict_count:
                lines.append(f"   {_plural(conflict_count, 'package')} with merge conflicts")
            if pr_count:
                lines.append(f"   {_plural(pr_count, 'package')} with existing PRs")
            lines.append("")

        lines.append("Issues Summary:")
        summary = [
            (sync_count, _plural(sync_count, "target branch sync issue")),
            (conflict_count, _plural(conflict_count, "merge conflict")),
            (pr_count, _plural(pr_count, "existing PR")),
            (misaligned_count, _plural(misaligned_count, "branch inconsistency", "branch inconsistencies")),
            (ahead_count, f"{_plural(ahead_count, 'package')} with unpushed commits"),
            (behind_count, f"{_plural(behind_count, 'package')} behind remote"),
            (no_remote_count, f"{_plural(no_remote_count, 'package')} with no remote branch"),
        ]
        lines.extend(f"   • {text}" for count, text in summary if count)
        lines.append("")

        lines.extend([RULE, "DETAILED ISSUES AND FIXES:", RULE, ""])
        # sorted() is stable, so equal scores keep input order
        ordered = sorted(with_issues, key=severity_score, reverse=True)
        for position, audit in enumerate(ordered, start=1):
            lines.extend(_package_details(audit, position, len(ordered)))

        lines.extend(_workflow(result, ordered))
        lines.append(RULE)
        lines.append("")
        lines.append("After fixing issues, re-run the audit to verify:")
        lines.append(f"   {rerun_command}")
        if publish_command:
            lines.append("")
            lines.append("Once all clear, proceed with publish:")
            lines.append(f"   {publish_command}")

    lines.append("╚" + "═" * (BOX_WIDTH - 2) + "╝")
    return "\n".join(lines)
