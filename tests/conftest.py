"""Shared fixtures: a scripted git backend and prober factories."""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

import pytest

from ravel.utils.git import GitCommandError, GitOutput, RepositoryProber

Response = str | Exception


class FakeGit:
    """Git backend answering from a script keyed by (cwd, args).

    Responses registered without a cwd apply to every repository. Unscripted
    commands fail like a git command exiting non-zero.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[Path, tuple[str, ...]]] = []
        self._responses: dict[tuple[str | None, tuple[str, ...]], Response] = {}
        self.fail_paths: set[Path] = set()

    def on(self, *args: str, stdout: str = "", error: Exception | None = None, cwd: Path | str | None = None) -> FakeGit:
        key = (str(cwd) if cwd is not None else None, tuple(args))
        self._responses[key] = error if error is not None else stdout
        return self

    def fail_everything_in(self, path: Path | str) -> None:
        self.fail_paths.add(Path(path))

    def commands_in(self, cwd: Path | str) -> list[tuple[str, ...]]:
        return [args for path, args in self.calls if path == Path(cwd)]

    async def run(self, args: Sequence[str], cwd: Path, suppress_error_logging: bool = False) -> GitOutput:
        args = tuple(args)
        self.calls.append((Path(cwd), args))

        if Path(cwd) in self.fail_paths:
            raise GitCommandError(f"simulated failure in {cwd}", args, returncode=128)

        response = self._responses.get((str(cwd), args), self._responses.get((None, args)))
        if response is None:
            raise GitCommandError(f"no scripted response for git {' '.join(args)}", args, returncode=1)
        if isinstance(response, Exception):
            raise response
        return GitOutput(stdout=response)


def script_clean_repo(
    fake: FakeGit,
    path: Path | str,
    branch: str = "main",
    target: str = "main",
    sha: str = "a" * 40,
) -> None:
    """Script a repository whose branch and target are fully in sync."""
    fake.on("rev-parse", "--abbrev-ref", "HEAD", stdout=f"{branch}\n", cwd=path)
    fake.on("ls-remote", "--exit-code", "--heads", "origin", branch, stdout=f"{sha}\trefs/heads/{branch}\n", cwd=path)
    fake.on("rev-list", "--left-right", "--count", f"origin/{branch}...HEAD", stdout="0\t0\n", cwd=path)
    fake.on("rev-parse", "--verify", target, stdout=f"{sha}\n", cwd=path)
    fake.on("ls-remote", "origin", target, stdout=f"{sha}\trefs/heads/{target}\n", cwd=path)
    fake.on("fetch", "origin", "--quiet", cwd=path)
    if branch != target:
        fake.on("merge-base", branch, f"origin/{target}", stdout=f"{sha}\n", cwd=path)
        fake.on("merge-tree", sha, branch, f"origin/{target}", stdout="", cwd=path)


def same_path_resolver(path: Path) -> Path | None:
    """Treat every package path as its own repository root."""
    return Path(path)


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def make_prober(fake_git: FakeGit) -> Callable[..., RepositoryProber]:
    def factory(**kwargs: object) -> RepositoryProber:
        kwargs.setdefault("repo_resolver", same_path_resolver)
        return RepositoryProber(fake_git, **kwargs)  # type: ignore[arg-type]

    return factory


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
