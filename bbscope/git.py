"""
Git introspection for bbscope.

Finds the repository root, reads remotes and the current branch, and turns a
remote URL into Bitbucket workspace/repository coordinates.

Supported remote forms:
- https://bitbucket.org/workspace/repo(.git)
- https://user@bitbucket.org/workspace/repo(.git)
- git@bitbucket.org:workspace/repo(.git)
- ssh://git@bitbucket.org/workspace/repo(.git)
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from .errors import GitError, MalformedPathError, UnrecognizedHostError


BITBUCKET_HOST = "bitbucket.org"
DEFAULT_REMOTE = "origin"

# Checked in order; "ssh://" must come before "git@" so ssh://git@host works
TRANSPORT_PREFIXES = ("ssh://", "git@", "https://", "http://")


@dataclass(frozen=True)
class RepoCoordinates:
    """Workspace and repository slug of a Bitbucket repository."""
    workspace: str
    repository: str

    @property
    def full_name(self) -> str:
        return f"{self.workspace}/{self.repository}"


def parse_remote_url(url: str, host: str = BITBUCKET_HOST) -> RepoCoordinates:
    """
    Parse a git remote URL into workspace/repository coordinates.

    Raises:
        UnrecognizedHostError: the URL does not point at ``host``
        MalformedPathError: no workspace/repository pair after the host
    """
    rest = url.strip()
    for prefix in TRANSPORT_PREFIXES:
        if rest.startswith(prefix):
            rest = rest[len(prefix):]
            break

    # Embedded usernames (user@host, git@host after ssh://)
    if "@" in rest:
        rest = rest.rsplit("@", 1)[1]

    if not rest.startswith(host):
        raise UnrecognizedHostError(f"Not a Bitbucket remote: {url}", url)
    path = rest[len(host):]
    if path and path[0] not in ":/":
        # e.g. bitbucket.org.example.com
        raise UnrecognizedHostError(f"Not a Bitbucket remote: {url}", url)
    path = path[1:]

    workspace, sep, repo_with_ext = path.partition("/")
    # Browser URLs carry extra segments (/src/main, /pull-requests/1)
    repository = repo_with_ext.split("/", 1)[0]
    if repository.endswith(".git"):
        repository = repository[: -len(".git")]

    if not sep or not workspace or not repository:
        raise MalformedPathError(f"Invalid repository path in remote: {url}", url)

    return RepoCoordinates(workspace=workspace, repository=repository)


def get_repo_root(start: Path | None = None) -> Path | None:
    """Find the repository root (directory containing .git), or None."""
    current = (start or Path.cwd()).resolve()
    while True:
        if (current / ".git").exists():
            return current
        if current == current.parent:
            return None
        current = current.parent


def _run_git(args: list[str], cwd: Path | None = None) -> str:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as e:
        raise GitError("git executable not found") from e
    except subprocess.CalledProcessError as e:
        message = (e.stderr or "").strip() or f"exit status {e.returncode}"
        raise GitError(f"git {' '.join(args)} failed: {message}") from e
    return result.stdout.strip()


def get_remote_url(remote: str = DEFAULT_REMOTE, repo_root: Path | None = None) -> str:
    """Return the fetch URL of ``remote``."""
    url = _run_git(["remote", "get-url", remote], cwd=repo_root)
    if not url:
        raise GitError(f"Remote '{remote}' has no URL")
    return url


def get_repo_info(remote: str = DEFAULT_REMOTE, repo_root: Path | None = None) -> RepoCoordinates:
    """Coordinates of the Bitbucket repository behind ``remote``."""
    return parse_remote_url(get_remote_url(remote, repo_root))


def get_current_branch(repo_root: Path | None = None) -> str:
    """Get the checked-out branch name."""
    branch = _run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=repo_root)
    if branch == "HEAD":
        raise GitError("HEAD is detached; pass a pull request ID explicitly")
    return branch
