"""
bbscope CLI - Bitbucket Cloud pull requests from the terminal.

Commands:
    pr      - List, view, diff, comment on and review pull requests
    repo    - List repositories in a workspace
    auth    - Login, logout and status (credentials live in the OS keyring)
    config  - Init, list, get and set configuration values
"""

from __future__ import annotations

import webbrowser
from pathlib import Path

import click
from dotenv import find_dotenv, load_dotenv

# Load .env from the current directory or the nearest parent
load_dotenv(find_dotenv(usecwd=True))

from . import __version__, display
from .bitbucket import BitbucketClient
from .config import (
    DEFAULT_API_URL,
    GlobalConfig,
    ProjectConfig,
    LOCAL_CONFIG_FILE_NAME,
    expand_key,
    get_config_value,
    get_global_config_path,
    init_local_config,
    set_config_value,
)
from .context import CliOptions, ResolvedContext, resolve_context
from .credentials import CredentialStore, verify_and_save
from .diff import filenames_only, filter_diff, colorize, parse_diff
from .errors import (
    ApiError,
    AuthError,
    BbscopeError,
    ConfigError,
    ContextError,
    describe_error,
)
from .git import DEFAULT_REMOTE, get_current_branch, get_repo_root
from .logs import setup_logging


PR_STATES = ["OPEN", "MERGED", "DECLINED", "SUPERSEDED"]


class CommandGroup(click.Group):
    """Top-level group that reports bbscope errors and exits 1."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except BbscopeError as e:
            display.error(describe_error(e))
            ctx.exit(1)


@click.group(cls=CommandGroup)
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.option("-q", "--quiet", is_flag=True, help="Only show errors")
@click.option("--profile", envvar="BBSCOPE_PROFILE", help="Config profile to use")
@click.option("-R", "--repo", metavar="WORKSPACE/REPO", help="Target repository")
@click.option("--remote", help="Git remote used to detect the repository")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool, profile: str | None,
         repo: str | None, remote: str | None, as_json: bool):
    """bbscope - Bitbucket Cloud pull requests from the terminal."""
    setup_logging(verbose=verbose, quiet=quiet)
    ctx.obj = CliOptions(
        verbose=verbose,
        quiet=quiet,
        profile=profile,
        repo=repo,
        remote=remote,
        json=as_json,
    )


def _options(ctx: click.Context) -> CliOptions:
    return ctx.find_object(CliOptions) or CliOptions()


def _resolve(ctx: click.Context, require_repository: bool = False) -> ResolvedContext:
    return resolve_context(_options(ctx), require_repository=require_repository)


def resolve_pr_id(rc: ResolvedContext, pr_id: int | None) -> int:
    """Explicit PR id, or the open PR whose source is the current branch."""
    if pr_id is not None:
        return pr_id
    coords = rc.coordinates()
    branch = get_current_branch(rc.repo_root)
    pr = rc.client.find_pull_request_by_branch(coords.workspace, coords.repository, branch)
    if pr is None:
        raise ContextError(f"No open pull request found for branch '{branch}'")
    return pr.id


def split_id_and_patterns(args: tuple[str, ...] | list[str]) -> tuple[int | None, list[str]]:
    """Treat a leading integer argument as a PR id, the rest as patterns."""
    if args and args[0].isdigit():
        return int(args[0]), list(args[1:])
    return None, list(args)


# ---------------------------------------------------------------------------
# pr
# ---------------------------------------------------------------------------


@main.group(name="pr")
def pr_group() -> None:
    """Pull request commands."""


@pr_group.command(name="list")
@click.option("--state", default="OPEN", type=click.Choice(PR_STATES, case_sensitive=False), help="Filter by state")
@click.option("--limit", default=50, type=click.IntRange(min=1), help="Maximum PRs to fetch")
@click.pass_context
def pr_list(ctx: click.Context, state: str, limit: int):
    """List pull requests."""
    rc = _resolve(ctx, require_repository=True)
    coords = rc.coordinates()

    prs = rc.client.list_pull_requests(coords.workspace, coords.repository, state=state, limit=limit)

    if rc.options.json:
        display.print_json(prs)
        return

    if not prs:
        display.info(f"No pull requests found in {coords.full_name} with state {state.upper()}")
        return

    display.page_output(display.format_pr_list(prs))


@pr_group.command(name="view")
@click.argument("pr_id", required=False, type=int)
@click.option("--web", is_flag=True, help="Open in browser")
@click.option("--comments", "show_comments", is_flag=True, help="Show comments")
@click.pass_context
def pr_view(ctx: click.Context, pr_id: int | None, web: bool, show_comments: bool):
    """View a pull request (defaults to the PR for the current branch)."""
    rc = _resolve(ctx, require_repository=True)
    coords = rc.coordinates()
    pr_id = resolve_pr_id(rc, pr_id)

    pr = rc.client.get_pull_request(coords.workspace, coords.repository, pr_id)

    if web:
        webbrowser.open(pr.html_url)
        display.success(f"Opened PR #{pr.id} in browser")
        return

    comments = None
    if show_comments or rc.options.json:
        comments = rc.client.list_pull_request_comments(coords.workspace, coords.repository, pr_id)

    if rc.options.json:
        display.print_json({"pr": pr, "comments": comments})
        return

    statuses = []
    if pr.source_commit:
        statuses = rc.client.list_commit_statuses(coords.workspace, coords.repository, pr.source_commit)

    display.print_pr_details(pr, statuses)
    if comments:
        display.print_comments(comments)


@pr_group.command(name="diff")
@click.argument("args", nargs=-1)
@click.option("--name-only", is_flag=True, help="Show only names of changed files")
@click.option("-w", "--web", is_flag=True, help="Open the diff in the browser")
@click.option("--max-diff-size", type=click.IntRange(min=1), default=None,
              help="Collapse files whose diff exceeds this many lines")
@click.pass_context
def pr_diff(ctx: click.Context, args: tuple[str, ...], name_only: bool, web: bool, max_diff_size: int | None):
    """Show the diff of a pull request.

    ARGS is an optional PR id followed by glob patterns selecting files.

    Examples:

        bbscope pr diff                  # PR for the current branch
        bbscope pr diff 42 'src/**/*.py' # Only Python files under src
        bbscope pr diff --name-only
    """
    rc = _resolve(ctx, require_repository=True)
    coords = rc.coordinates()
    pr_id, patterns = split_id_and_patterns(args)
    pr_id = resolve_pr_id(rc, pr_id)

    if web:
        pr = rc.client.get_pull_request(coords.workspace, coords.repository, pr_id)
        webbrowser.open(f"{pr.html_url}/diff")
        display.success(f"Opened PR #{pr_id} diff in browser")
        return

    document = parse_diff(rc.client.get_pull_request_diff(coords.workspace, coords.repository, pr_id))

    if name_only:
        names = filenames_only(document, patterns)
        if rc.options.json:
            display.print_json(names)
        else:
            for name in names:
                click.echo(name)
        return

    filtered = filter_diff(document, patterns, max_diff_size)
    if rc.options.json:
        display.print_json(filtered.files)
        return

    if not filtered.files:
        display.info("No files match the given patterns")
        return

    display.page_output(colorize(filtered))


@pr_group.command(name="comments")
@click.argument("pr_id", required=False, type=int)
@click.pass_context
def pr_comments(ctx: click.Context, pr_id: int | None):
    """Show comments on a pull request."""
    rc = _resolve(ctx, require_repository=True)
    coords = rc.coordinates()
    pr_id = resolve_pr_id(rc, pr_id)

    comments = rc.client.list_pull_request_comments(coords.workspace, coords.repository, pr_id)

    if rc.options.json:
        display.print_json(comments)
        return

    if not comments:
        display.info(f"No comments found for PR #{pr_id}")
        return

    display.print_comments(comments)


@pr_group.command(name="review")
@click.argument("pr_id", required=False, type=int)
@click.option("-a", "--approve", is_flag=True, help="Approve the pull request")
@click.option("-r", "--request-changes", is_flag=True, help="Request changes")
@click.option("-c", "--comment", is_flag=True, help="Comment on the pull request")
@click.option("-b", "--body", help="Comment body")
@click.pass_context
def pr_review(ctx: click.Context, pr_id: int | None, approve: bool, request_changes: bool,
              comment: bool, body: str | None):
    """Approve, request changes on, or comment on a pull request.

    Without an action flag, prompts for the action.
    """
    rc = _resolve(ctx, require_repository=True)
    coords = rc.coordinates()

    if comment and not body:
        raise click.UsageError("--body is required with --comment")

    pr_id = resolve_pr_id(rc, pr_id)

    if not (approve or request_changes or comment):
        action = click.prompt(
            "Review action",
            type=click.Choice(["approve", "request-changes", "comment"]),
            default="approve",
        )
        approve = action == "approve"
        request_changes = action == "request-changes"
        comment = action == "comment"
        if comment:
            body = click.prompt("Comment body")

    if approve:
        rc.client.approve_pull_request(coords.workspace, coords.repository, pr_id)
        display.success(f"Approved pull request #{pr_id}")

    if request_changes:
        rc.client.request_changes(coords.workspace, coords.repository, pr_id)
        display.success(f"Requested changes on pull request #{pr_id}")

    if comment and body:
        rc.client.post_comment(coords.workspace, coords.repository, pr_id, body)
        display.success(f"Commented on pull request #{pr_id}")


# ---------------------------------------------------------------------------
# repo
# ---------------------------------------------------------------------------


@main.group(name="repo")
def repo_group() -> None:
    """Repository commands."""


@repo_group.command(name="list")
@click.option("-w", "--workspace", help="Workspace to list (defaults to the resolved workspace)")
@click.option("--limit", default=100, type=click.IntRange(min=1), help="Maximum repositories to fetch")
@click.pass_context
def repo_list(ctx: click.Context, workspace: str | None, limit: int):
    """List repositories in a workspace."""
    rc = _resolve(ctx)
    workspace = workspace or rc.require_workspace()

    repos = rc.client.list_repositories(workspace, limit=limit)

    if rc.options.json:
        display.print_json(repos)
        return

    if not repos:
        display.info(f"No repositories found in workspace '{workspace}'")
        return

    display.page_output(display.format_repo_list(repos))


# ---------------------------------------------------------------------------
# auth
# ---------------------------------------------------------------------------


@main.group(name="auth")
def auth_group() -> None:
    """Authentication commands."""


@auth_group.command(name="login")
@click.option("-u", "--username", help="Bitbucket username")
@click.pass_context
def auth_login(ctx: click.Context, username: str | None):
    """Verify an app password and store it in the OS keyring."""
    options = _options(ctx)
    config = GlobalConfig.load()
    profile_name = config.active_profile_name(options.profile)
    profile = config.get_active_profile(options.profile)

    username = username or click.prompt("Bitbucket username", default=profile.user if profile else None)
    username = username.strip()
    if not username:
        raise AuthError("Username cannot be empty")

    secret = click.prompt("App password", hide_input=True).strip()
    if not secret:
        raise AuthError("App password cannot be empty")

    api_url = (profile.api_url if profile else None) or DEFAULT_API_URL
    client = BitbucketClient(api_url, auth=(username, secret))

    display.info("Verifying credentials...")
    try:
        user = verify_and_save(client, CredentialStore(), username, secret)
    except ApiError as e:
        raise AuthError(f"Authentication failed for '{username}'") from e

    try:
        set_config_value(f"profile.{profile_name}.user", username)
    except ConfigError as e:
        raise ConfigError(
            f"Credentials for '{username}' were saved to the keyring, but profile "
            f"'{profile_name}' could not be updated. Run: bbscope config set user {username}"
        ) from e

    display.success(f"Authenticated as {user.display_name} ({user.uuid})")
    display.success(f"Credentials saved for user '{username}' (profile '{profile_name}')")


@auth_group.command(name="logout")
@click.option("-u", "--username", help="User to log out (defaults to the profile user)")
@click.pass_context
def auth_logout(ctx: click.Context, username: str | None):
    """Remove stored credentials."""
    options = _options(ctx)
    profile = GlobalConfig.load().get_active_profile(options.profile)

    username = username or (profile.user if profile else None) or click.prompt("Username to logout")
    username = username.strip()
    if not username:
        raise AuthError("No username provided")

    CredentialStore().delete(username)
    display.success(f"Logged out {username}")


@auth_group.command(name="status")
@click.pass_context
def auth_status(ctx: click.Context):
    """Check whether stored credentials still authenticate."""
    options = _options(ctx)
    config = GlobalConfig.load()
    profile_name = config.active_profile_name(options.profile)
    profile = config.get_active_profile(options.profile)

    username = profile.user if profile else None
    if not username:
        raise AuthError(f"No user configured in profile '{profile_name}'. Run: bbscope auth login")

    secret = CredentialStore().get(username)
    api_url = profile.api_url or DEFAULT_API_URL
    client = BitbucketClient(api_url, auth=(username, secret))

    try:
        user = client.get_current_user()
    except ApiError as e:
        raise AuthError(f"Stored credentials for '{username}' were rejected") from e

    if options.json:
        display.print_json({"profile": profile_name, "user": username, "display_name": user.display_name,
                            "uuid": user.uuid, "api_url": api_url})
        return

    click.echo(f"Profile:  {profile_name}")
    click.echo(f"User:     {username}")
    click.echo(f"API:      {api_url}")
    display.success(f"Authenticated as {user.display_name} ({user.uuid})")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@main.group(name="config")
def config_group() -> None:
    """Configuration commands."""


def _local_config_path(cwd: Path | None = None) -> Path:
    """Existing .bbscope for this checkout, or where a new one goes."""
    cwd = cwd or Path.cwd()
    repo_root = get_repo_root(cwd)
    project = ProjectConfig.load(cwd, repo_root)
    if project is not None and project.path is not None:
        return project.path
    return (repo_root or cwd) / LOCAL_CONFIG_FILE_NAME


@config_group.command(name="init")
@click.option("--local", is_flag=True, help="Write a .bbscope file for this checkout")
@click.pass_context
def config_init(ctx: click.Context, local: bool):
    """Interactively create configuration."""
    options = _options(ctx)
    workspace = click.prompt("Workspace (e.g. myworkspace)").strip()
    repository = click.prompt("Default repository", default="", show_default=False).strip()
    remote = click.prompt("Default remote", default=DEFAULT_REMOTE).strip()

    if local:
        cwd = Path.cwd()
        target = get_repo_root(cwd) or cwd
        path = init_local_config(target, workspace, repository, remote)
        display.success(f"Local configuration initialized at {path}")
        return

    config = GlobalConfig.load()
    profile_name = click.prompt("Profile name", default=config.active_profile_name(options.profile)).strip()
    user = click.prompt("Bitbucket username", default="", show_default=False).strip()

    set_config_value("default_profile", profile_name)
    values = {"workspace": workspace, "repository": repository, "remote": remote, "user": user}
    for name, value in values.items():
        if value:
            set_config_value(f"profile.{profile_name}.{name}", value)

    display.success(f"Configuration initialized at {get_global_config_path()}")
    if user:
        display.info("Next: bbscope auth login")


@config_group.command(name="list")
@click.pass_context
def config_list(ctx: click.Context):
    """Show effective configuration values."""
    options = _options(ctx)
    try:
        config = GlobalConfig.load()
    except ConfigError as e:
        display.warning(describe_error(e))
        config = GlobalConfig()
    cwd = Path.cwd()
    project = ProjectConfig.load(cwd, get_repo_root(cwd))
    profile = config.get_active_profile(options.profile)

    def pick(name: str) -> str | None:
        local_value = getattr(project, name, None) if project else None
        return local_value or (getattr(profile, name, None) if profile else None)

    values = {
        "profile": config.active_profile_name(options.profile),
        "user": profile.user if profile else None,
        "workspace": pick("workspace"),
        "repository": pick("repository"),
        "remote": pick("remote"),
        "api_url": (profile.api_url if profile else None) or DEFAULT_API_URL,
        "output_format": profile.output_format if profile else None,
    }
    values = {key: value for key, value in values.items() if value}

    if options.json:
        display.print_json(values)
        return

    for key, value in values.items():
        click.echo(f"{key}={value}")


@config_group.command(name="get")
@click.argument("key", required=False)
@click.option("--local", is_flag=True, help="Read from the .bbscope file")
@click.pass_context
def config_get(ctx: click.Context, key: str | None, local: bool):
    """Print a configuration value (or the whole file without KEY)."""
    options = _options(ctx)
    path = _local_config_path() if local else get_global_config_path()

    if not key:
        if not path.exists():
            raise ConfigError(f"No configuration file at {path}")
        click.echo(path.read_text(encoding="utf-8"), nl=False)
        return

    profile_name = GlobalConfig.load().active_profile_name(options.profile) if not local else "default"
    full_key = expand_key(key, profile_name, local=local)
    value = get_config_value(full_key, path)
    if value is None:
        raise ConfigError(f"'{full_key}' is not set in {path}")

    if options.json or not isinstance(value, str):
        display.print_json({full_key: value} if options.json else value)
    else:
        click.echo(value)


@config_group.command(name="set")
@click.argument("key")
@click.argument("value")
@click.option("--local", is_flag=True, help="Write to the .bbscope file")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str, local: bool):
    """Set a configuration value.

    Short keys (workspace, user, repository, remote, api_url, output_format)
    apply to the active profile, or to [project] with --local.

    Examples:

        bbscope config set workspace acme
        bbscope config set profile.work.api_url https://api.bitbucket.org/2.0
        bbscope config set --local repository widgets
    """
    options = _options(ctx)
    if local:
        path = _local_config_path()
        full_key = expand_key(key, local=True)
    else:
        path = get_global_config_path()
        profile_name = GlobalConfig.load(path).active_profile_name(options.profile)
        full_key = expand_key(key, profile_name)

    set_config_value(full_key, value, path, local=local)
    display.success(f"Set {full_key} = {value}")


if __name__ == "__main__":
    main()
