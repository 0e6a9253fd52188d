"""
Context resolution for bbscope commands.

Works out the workspace, repository, git remote, credentials and API URL a
command runs against. Each coordinate comes from the first source that has
it:

    workspace:   --repo > .bbscope > git remote > active profile
    repository:  --repo > .bbscope > git remote
    remote name: --remote > .bbscope > "origin"

Optional sources that fail (no checkout, unparseable remote, unreadable
config) are logged and skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, TypeVar

from .bitbucket import BitbucketClient
from .config import DEFAULT_API_URL, GlobalConfig, Profile, ProjectConfig
from .credentials import CredentialStore
from .errors import (
    AuthError,
    ConfigError,
    GitError,
    NoRepositoryError,
    NoWorkspaceError,
    RemoteParseError,
)
from .git import DEFAULT_REMOTE, RepoCoordinates, get_repo_info, get_repo_root


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CliOptions:
    """Global flags, built once per invocation."""
    verbose: bool = False
    quiet: bool = False
    profile: str | None = None
    repo: str | None = None
    remote: str | None = None
    json: bool = False


@dataclass
class ResolvedContext:
    """Everything a command needs to talk to the right repository."""
    client: BitbucketClient
    options: CliOptions
    workspace: str | None = None
    repository: str | None = None
    remote: str = DEFAULT_REMOTE
    profile_name: str = "default"
    profile: Profile | None = None
    username: str | None = None
    api_url: str = DEFAULT_API_URL
    repo_root: Path | None = None
    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    project_config: ProjectConfig | None = None
    # coordinate -> source it was taken from
    sources: dict[str, str] = field(default_factory=dict)

    def require_workspace(self) -> str:
        if not self.workspace:
            raise NoWorkspaceError()
        return self.workspace

    def coordinates(self) -> RepoCoordinates:
        """Workspace and repository, or raise if either is unresolved."""
        if not self.repository:
            raise NoRepositoryError()
        return RepoCoordinates(workspace=self.require_workspace(), repository=self.repository)


def parse_repo_override(value: str | None) -> tuple[str | None, str] | None:
    """
    Parse a --repo value.

    ``"ws/repo"`` gives both parts, ``"repo"`` only the repository. Any
    other shape returns None so resolution falls through to other sources.
    """
    if not value:
        return None
    parts = value.split("/")
    if len(parts) == 1:
        return None, parts[0]
    if len(parts) == 2 and all(parts):
        return parts[0], parts[1]
    return None


def first_present(candidates: Iterable[tuple[str, T | None]]) -> tuple[str, T] | None:
    """First (source, value) pair whose value is not None/empty."""
    for source, value in candidates:
        if value:
            return source, value
    return None


def resolve_context(
    options: CliOptions | None = None,
    cwd: Path | None = None,
    *,
    require_repository: bool = False,
    load_global: Callable[[], GlobalConfig] = GlobalConfig.load,
    find_repo_root: Callable[[Path | None], Path | None] = get_repo_root,
    detect_remote: Callable[[str, Path], RepoCoordinates] = get_repo_info,
    credential_store: CredentialStore | None = None,
) -> ResolvedContext:
    """
    Merge CLI flags, local config, the git remote and the global profile.

    Raises:
        NoRepositoryError: ``require_repository`` is set and no source
            names a repository
    """
    options = options or CliOptions()
    cwd = cwd or Path.cwd()

    try:
        global_config = load_global()
    except ConfigError as e:
        logger.warning("Failed to load global config: %s", e)
        global_config = GlobalConfig()

    repo_root = find_repo_root(cwd)

    try:
        project = ProjectConfig.load(cwd, repo_root)
    except ConfigError as e:
        logger.warning("Failed to load local config: %s", e)
        project = None

    remote_choice = first_present([
        ("--remote", options.remote),
        ("local config", project.remote if project else None),
    ])
    remote = remote_choice[1] if remote_choice else DEFAULT_REMOTE

    git_coords: RepoCoordinates | None = None
    if repo_root is not None:
        try:
            git_coords = detect_remote(remote, repo_root)
        except (GitError, RemoteParseError) as e:
            logger.debug("Failed to get git repo info: %s", e)
    else:
        logger.debug("Not inside a git checkout; skipping remote detection")

    override = parse_repo_override(options.repo)
    if options.repo and override is None:
        logger.debug("Ignoring unparseable --repo value %r", options.repo)
    override_workspace, override_repo = override if override else (None, None)

    profile_name = global_config.active_profile_name(options.profile)
    profile = global_config.get_active_profile(options.profile)

    workspace = first_present([
        ("--repo", override_workspace),
        ("local config", project.workspace if project else None),
        ("git remote", git_coords.workspace if git_coords else None),
        (f"profile '{profile_name}'", profile.workspace if profile else None),
    ])
    repository = first_present([
        ("--repo", override_repo),
        ("local config", project.repository if project else None),
        ("git remote", git_coords.repository if git_coords else None),
    ])

    if require_repository and repository is None:
        raise NoRepositoryError()

    username = profile.user if profile else None
    auth: tuple[str, str] | None = None
    auth_error: AuthError | None = None
    if username:
        store = credential_store or CredentialStore()
        try:
            auth = (username, store.get(username))
        except AuthError as e:
            logger.debug("No usable credentials for %s: %s", username, e)
            auth_error = e
    else:
        auth_error = AuthError(f"no user configured in profile '{profile_name}'")

    api_url = (profile.api_url if profile else None) or DEFAULT_API_URL
    client = BitbucketClient(api_url, auth=auth, auth_error=auth_error)

    sources = {}
    if workspace:
        sources["workspace"] = workspace[0]
    if repository:
        sources["repository"] = repository[0]
    sources["remote"] = remote_choice[0] if remote_choice else "default"

    logger.debug(
        "Context resolved - workspace: %s, repository: %s, sources: %s",
        workspace[1] if workspace else None,
        repository[1] if repository else None,
        sources,
    )

    return ResolvedContext(
        client=client,
        options=options,
        workspace=workspace[1] if workspace else None,
        repository=repository[1] if repository else None,
        remote=remote,
        profile_name=profile_name,
        profile=profile,
        username=username,
        api_url=api_url,
        repo_root=repo_root,
        global_config=global_config,
        project_config=project,
        sources=sources,
    )
