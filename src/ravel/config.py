"""Configuration management for ravel."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from ravel.core.models import Package


class AuditOptions(BaseModel):
    """Options for a branch-state audit."""

    target_branch: str = Field(default="main", description="Shared release-target branch")
    expected_branch: str | None = Field(
        default=None,
        description="Branch every package should be on. Detected as the most common branch if unset.",
    )
    fallback_branch: str = Field(default="main", description="Expected branch when detection finds nothing usable")
    check_pr: bool = Field(default=True, description="Look up open pull requests for each branch")
    check_conflicts: bool = Field(default=True, description="Probe for merge conflicts with the target branch")
    check_versions: bool = Field(default=True, description="Check manifest versions against branch conventions")
    concurrency: int = Field(default=5, ge=1, description="Maximum packages probed at once")


class GitConfig(BaseModel):
    """Git backend settings."""

    timeout: float = Field(default=60.0, gt=0, description="Per-command timeout in seconds")
    remote: str = Field(default="origin", description="Remote to compare against")


class GitHubConfig(BaseModel):
    """Pull request lookup settings."""

    api_base: str = Field(default="https://api.github.com", description="GitHub API root")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    token_env: str = Field(default="GITHUB_TOKEN", description="Environment variable holding the token")


class WorkspaceConfig(BaseModel):
    """Where the packages of the workspace are."""

    packages: list[Package] = Field(
        default_factory=list,
        description="Explicit package list. Discovered from manifests if empty.",
    )
    max_depth: int = Field(default=2, ge=1, description="Directory depth searched for manifests")
    exclude: list[str] = Field(
        default_factory=lambda: ["node_modules", "dist", "build", "venv", "__pycache__"],
        description="Directory names skipped during discovery",
    )


class ReportConfig(BaseModel):
    """Report rendering settings."""

    good_display_limit: int = Field(default=5, ge=0, description="Good packages listed before '... and N more'")
    rerun_command: str = Field(default="ravel audit", description="Command suggested to re-run the audit")
    publish_command: str | None = Field(default=None, description="Command suggested once all checks pass")


class Config(BaseModel):
    """ravel configuration."""

    audit: AuditOptions = Field(default_factory=AuditOptions)
    git: GitConfig = Field(default_factory=GitConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from file or use defaults."""
        if config_path is None:
            # Look for config in .ravel/config.yaml
            config_path = Path(".ravel/config.yaml")

        if config_path.exists():
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}
            return cls.model_validate(data)

        return cls()

    def save(self, config_path: Path) -> None:
        """Save configuration to file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with config_path.open("w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)


def get_config_dir(project_root: Path | None = None) -> Path:
    """Get the .ravel directory, creating if needed."""
    if project_root is None:
        project_root = Path.cwd()
    config_dir = project_root / ".ravel"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir
