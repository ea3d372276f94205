"""CLI interface for ravel."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from ravel import __version__
from ravel.config import Config, get_config_dir
from ravel.core.auditor import BranchAuditor
from ravel.core.autosync import FAST_FORWARD_IMPOSSIBLE, auto_sync_branch
from ravel.core.models import AuditResult, Package
from ravel.core.report import format_audit_results
from ravel.sync.github_client import PullRequestFinder
from ravel.utils.git import GitRunner, RepositoryProber
from ravel.utils.manifest import discover_packages

app = typer.Typer(
    name="ravel",
    help="Audit branch state across a multi-package workspace before a release.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("ravel")


def _configure_logging(verbose: int) -> None:
    """Route log records through rich; -v for INFO, -vv for DEBUG."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, markup=False)],
        force=True,
    )


def _load_config(config_path: Path | None) -> Config:
    try:
        return Config.load(config_path)
    except (ValidationError, OSError, ValueError) as e:
        err_console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(1) from e


def _resolve_packages(config: Config, workspace: Path) -> list[Package]:
    if config.workspace.packages:
        return [
            Package(name=p.name, path=p.path if p.path.is_absolute() else (workspace / p.path).resolve())
            for p in config.workspace.packages
        ]
    return discover_packages(workspace, max_depth=config.workspace.max_depth, exclude=config.workspace.exclude)


async def _run_audit(config: Config, packages: list[Package]) -> AuditResult:
    backend = GitRunner(timeout=config.git.timeout)
    opts = config.audit

    if not opts.check_pr:
        prober = RepositoryProber(backend, remote=config.git.remote)
        return await BranchAuditor(prober, opts).audit(packages)

    token = os.getenv(config.github.token_env)
    if not token:
        logger.warning(f"{config.github.token_env} is not set; open PR checks will find nothing")

    async with PullRequestFinder(
        backend,
        token=token,
        timeout=config.github.timeout,
        api_base=config.github.api_base,
        remote=config.git.remote,
    ) as finder:
        prober = RepositoryProber(backend, pr_lookup=finder, remote=config.git.remote)
        return await BranchAuditor(prober, opts).audit(packages)


@app.command()
def audit(
    workspace: Annotated[
        Path,
        typer.Argument(
            help="Workspace directory containing the packages",
            exists=True,
            file_okay=False,
            dir_okay=True,
            resolve_path=True,
        ),
    ] = Path("."),
    branch: Annotated[
        str | None,
        typer.Option("--branch", "-b", help="Expected branch (default: most common branch)"),
    ] = None,
    target: Annotated[
        str | None,
        typer.Option("--target", "-t", help="Release-target branch (default from config: main)"),
    ] = None,
    no_pr: Annotated[bool, typer.Option("--no-pr", help="Skip open pull request lookups")] = False,
    no_conflicts: Annotated[bool, typer.Option("--no-conflicts", help="Skip merge-conflict probes")] = False,
    no_versions: Annotated[bool, typer.Option("--no-versions", help="Skip version/branch checks")] = False,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-j", min=1, help="Packages probed at once"),
    ] = None,
    output_format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format: text, json"),
    ] = "text",
    strict: Annotated[bool, typer.Option("--strict", help="Exit non-zero when any package has issues")] = False,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Config file (default: .ravel/config.yaml)"),
    ] = None,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase log verbosity (-v info, -vv debug)"),
    ] = 0,
) -> None:
    """Audit branch state of every package in the workspace."""
    _configure_logging(verbose)
    config = _load_config(config_path)

    overrides: dict[str, object] = {}
    if branch:
        overrides["expected_branch"] = branch
    if target:
        overrides["target_branch"] = target
    if no_pr:
        overrides["check_pr"] = False
    if no_conflicts:
        overrides["check_conflicts"] = False
    if no_versions:
        overrides["check_versions"] = False
    if concurrency:
        overrides["concurrency"] = concurrency
    config.audit = config.audit.model_copy(update=overrides)

    packages = _resolve_packages(config, workspace)
    if not packages:
        err_console.print(f"[yellow]No packages found in {workspace}[/yellow]")
        raise typer.Exit(1)

    result = asyncio.run(_run_audit(config, packages))

    if output_format == "json":
        # Use print directly to avoid Rich markup processing
        print(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        report = format_audit_results(
            result,
            good_display_limit=config.report.good_display_limit,
            rerun_command=config.report.rerun_command,
            publish_command=config.report.publish_command,
        )
        console.print(report, markup=False, highlight=False, soft_wrap=True)

    if strict and result.issues_found > 0:
        raise typer.Exit(1)


@app.command()
def sync(
    path: Annotated[
        Path,
        typer.Argument(help="Package checkout to sync", exists=True, file_okay=False, resolve_path=True),
    ],
    checkout: Annotated[str | None, typer.Option("--checkout", help="Branch to check out first")] = None,
    pull: Annotated[bool, typer.Option("--pull", help="Pull (fast-forward only)")] = False,
    push: Annotated[bool, typer.Option("--push", help="Push the current branch")] = False,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase log verbosity"),
    ] = 0,
) -> None:
    """Checkout, pull and/or push a single package."""
    _configure_logging(verbose)
    if not (checkout or pull or push):
        err_console.print("[yellow]Nothing to do: pass --checkout, --pull and/or --push[/yellow]")
        raise typer.Exit(1)

    result = asyncio.run(auto_sync_branch(path, checkout=checkout, pull=pull, push=push))

    for action in result.actions:
        console.print(f"[green]✓[/green] {action}")

    if not result.success:
        console.print(f"[bold red]✗ {result.error}[/bold red]")
        if result.error == FAST_FORWARD_IMPOSSIBLE:
            console.print("[dim]Branches have diverged: merge or rebase manually, then re-run the audit.[/dim]")
        raise typer.Exit(1)


@app.command()
def init(
    force: Annotated[bool, typer.Option("--force", help="Overwrite an existing config")] = False,
) -> None:
    """Write a default .ravel/config.yaml."""
    config_path = get_config_dir() / "config.yaml"
    if config_path.exists() and not force:
        console.print(f"[yellow]{config_path} already exists (use --force to overwrite)[/yellow]")
        raise typer.Exit(1)
    Config().save(config_path)
    console.print(f"[green]Wrote {config_path}[/green]")


@app.command()
def version() -> None:
    """Show the ravel version."""
    console.print(f"ravel {__version__}")


if __name__ == "__main__":
    app()
