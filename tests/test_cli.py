from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from bbscope.bitbucket import Comment, PullRequest, Repository, User
from bbscope.cli import main, split_id_and_patterns
from bbscope.config import get_config_value, get_global_config_path
from bbscope.context import ResolvedContext
from bbscope.errors import ConfigError, NoRepositoryError, RequestFailedError


DIFF = (
    "diff --git a/src/a.rs b/src/a.rs\n"
    "--- a/src/a.rs\n"
    "+++ b/src/a.rs\n"
    "@@ -1 +1 @@\n"
    "-old\n"
    "+new\n"
    "diff --git a/docs/b.txt b/docs/b.txt\n"
    "+doc\n"
)


def make_pr(pr_id=42, **overrides):
    values = dict(
        id=pr_id,
        title="Fix login redirect",
        state="OPEN",
        author="Jane Doe",
        source_branch="feature/login",
        destination_branch="main",
        html_url=f"https://bitbucket.org/acme/widgets/pull-requests/{pr_id}",
        source_commit="abc123",
    )
    values.update(overrides)
    return PullRequest(**values)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def client():
    client = Mock()
    client.list_commit_statuses.return_value = []
    return client


@pytest.fixture
def resolved(client):
    """Patch context resolution to acme/widgets with a mock client."""
    def fake_resolve(options, require_repository=False):
        return ResolvedContext(
            client=client,
            options=options,
            workspace="acme",
            repository="widgets",
            repo_root=Path("/work/widgets"),
        )

    with patch("bbscope.cli.resolve_context", side_effect=fake_resolve) as mock_resolve:
        yield mock_resolve


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("BBSCOPE_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.delenv("BBSCOPE_PROFILE", raising=False)
    monkeypatch.chdir(tmp_path)
    with patch("bbscope.cli.get_repo_root", return_value=None):
        yield tmp_path


def test_help_lists_command_groups(runner):
    result = runner.invoke(main, ["--help"])

    assert result.exit_code == 0
    for group in ["pr", "repo", "auth", "config"]:
        assert group in result.output


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_split_id_and_patterns():
    assert split_id_and_patterns(("42", "*.rs")) == (42, ["*.rs"])
    assert split_id_and_patterns(("*.rs", "docs/")) == (None, ["*.rs", "docs/"])
    assert split_id_and_patterns(()) == (None, [])


def test_pr_list(runner, resolved, client):
    client.list_pull_requests.return_value = [make_pr(42), make_pr(43, title="Bump deps")]

    result = runner.invoke(main, ["pr", "list", "--state", "merged", "--limit", "5"])

    assert result.exit_code == 0, result.output
    assert "#42" in result.output
    assert "Bump deps" in result.output
    client.list_pull_requests.assert_called_once_with("acme", "widgets", state="MERGED", limit=5)
    assert resolved.call_args.kwargs["require_repository"] is True


def test_pr_list_json(runner, resolved, client):
    client.list_pull_requests.return_value = [make_pr(42)]

    result = runner.invoke(main, ["--json", "pr", "list"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data[0]["id"] == 42
    assert data[0]["source_branch"] == "feature/login"


def test_pr_list_empty(runner, resolved, client):
    client.list_pull_requests.return_value = []

    result = runner.invoke(main, ["pr", "list"])

    assert result.exit_code == 0
    assert "No pull requests found in acme/widgets" in result.output


def test_global_repo_flag_reaches_resolution(runner, resolved, client):
    client.list_pull_requests.return_value = []

    runner.invoke(main, ["-R", "acme/widgets", "--remote", "upstream", "pr", "list"])

    options = resolved.call_args.args[0]
    assert options.repo == "acme/widgets"
    assert options.remote == "upstream"


def test_unresolved_repository_exits_with_error(runner):
    with patch("bbscope.cli.resolve_context", side_effect=NoRepositoryError()):
        result = runner.invoke(main, ["pr", "list"])

    assert result.exit_code == 1
    assert "No repository found" in result.output


def test_api_error_shows_cause_chain(runner, resolved, client):
    client.list_pull_requests.side_effect = RequestFailedError(500, "boom")

    result = runner.invoke(main, ["pr", "list"])

    assert result.exit_code == 1
    assert "API request failed (500)" in result.output


def test_pr_view(runner, resolved, client):
    client.get_pull_request.return_value = make_pr(42, description="Fixes the redirect loop", approved_by=["Bob"])

    result = runner.invoke(main, ["pr", "view", "42"])

    assert result.exit_code == 0, result.output
    assert "#42 Fix login redirect" in result.output
    assert "Fixes the redirect loop" in result.output
    assert "Bob" in result.output
    client.list_commit_statuses.assert_called_once_with("acme", "widgets", "abc123")
    client.list_pull_request_comments.assert_not_called()


def test_pr_view_with_comments(runner, resolved, client):
    client.get_pull_request.return_value = make_pr(42)
    client.list_pull_request_comments.return_value = [
        Comment(id=1, author="Bob", content="Please add a test", inline_path="src/a.rs", inline_line=3),
    ]

    result = runner.invoke(main, ["pr", "view", "42", "--comments"])

    assert result.exit_code == 0, result.output
    assert "Please add a test" in result.output
    assert "src/a.rs:3" in result.output


def test_pr_view_defaults_to_current_branch(runner, resolved, client):
    client.find_pull_request_by_branch.return_value = make_pr(7)
    client.get_pull_request.return_value = make_pr(7)

    with patch("bbscope.cli.get_current_branch", return_value="feature/login"):
        result = runner.invoke(main, ["pr", "view"])

    assert result.exit_code == 0, result.output
    client.find_pull_request_by_branch.assert_called_once_with("acme", "widgets", "feature/login")
    client.get_pull_request.assert_called_once_with("acme", "widgets", 7)


def test_pr_view_no_pr_for_branch(runner, resolved, client):
    client.find_pull_request_by_branch.return_value = None

    with patch("bbscope.cli.get_current_branch", return_value="feature/none"):
        result = runner.invoke(main, ["pr", "view"])

    assert result.exit_code == 1
    assert "No open pull request found for branch 'feature/none'" in result.output


def test_pr_view_web(runner, resolved, client):
    client.get_pull_request.return_value = make_pr(42)

    with patch("bbscope.cli.webbrowser.open") as open_browser:
        result = runner.invoke(main, ["pr", "view", "42", "--web"])

    assert result.exit_code == 0
    open_browser.assert_called_once_with("https://bitbucket.org/acme/widgets/pull-requests/42")


def test_pr_diff_filters_by_pattern(runner, resolved, client):
    client.get_pull_request_diff.return_value = DIFF

    result = runner.invoke(main, ["pr", "diff", "42", "*.rs"])

    assert result.exit_code == 0, result.output
    assert "+new" in result.output
    assert "docs/b.txt" not in result.output
    client.get_pull_request_diff.assert_called_once_with("acme", "widgets", 42)


def test_pr_diff_name_only(runner, resolved, client):
    client.get_pull_request_diff.return_value = DIFF

    result = runner.invoke(main, ["pr", "diff", "42", "--name-only"])

    assert result.exit_code == 0
    assert result.output.splitlines() == ["src/a.rs", "docs/b.txt"]


def test_pr_diff_max_size(runner, resolved, client):
    client.get_pull_request_diff.return_value = DIFF

    result = runner.invoke(main, ["pr", "diff", "42", "--max-diff-size", "3"])

    assert result.exit_code == 0
    assert "diff --git a/src/a.rs b/src/a.rs" in result.output
    assert "5 lines omitted" in result.output
    assert "+doc" in result.output


def test_pr_diff_no_matching_files(runner, resolved, client):
    client.get_pull_request_diff.return_value = DIFF

    result = runner.invoke(main, ["pr", "diff", "42", "*.py"])

    assert result.exit_code == 0
    assert "No files match" in result.output


def test_pr_comments(runner, resolved, client):
    client.list_pull_request_comments.return_value = [Comment(id=1, author="Bob", content="Nice")]

    result = runner.invoke(main, ["pr", "comments", "42"])

    assert result.exit_code == 0
    assert "Nice" in result.output


def test_pr_review_approve(runner, resolved, client):
    result = runner.invoke(main, ["pr", "review", "42", "--approve"])

    assert result.exit_code == 0, result.output
    client.approve_pull_request.assert_called_once_with("acme", "widgets", 42)
    client.post_comment.assert_not_called()


def test_pr_review_comment(runner, resolved, client):
    result = runner.invoke(main, ["pr", "review", "42", "-c", "-b", "LGTM"])

    assert result.exit_code == 0, result.output
    client.post_comment.assert_called_once_with("acme", "widgets", 42, "LGTM")


def test_pr_review_comment_requires_body(runner, resolved, client):
    result = runner.invoke(main, ["pr", "review", "42", "--comment"])

    assert result.exit_code == 2
    client.post_comment.assert_not_called()


def test_pr_review_prompts_for_action(runner, resolved, client):
    result = runner.invoke(main, ["pr", "review", "42"], input="request-changes\n")

    assert result.exit_code == 0, result.output
    client.request_changes.assert_called_once_with("acme", "widgets", 42)
    client.approve_pull_request.assert_not_called()


def test_repo_list(runner, resolved, client):
    client.list_repositories.return_value = [
        Repository(name="widgets", full_name="acme/widgets", language="python", is_private=True),
    ]

    result = runner.invoke(main, ["repo", "list"])

    assert result.exit_code == 0, result.output
    assert "acme/widgets" in result.output
    assert "private" in result.output
    client.list_repositories.assert_called_once_with("acme", limit=100)


def test_repo_list_explicit_workspace(runner, resolved, client):
    client.list_repositories.return_value = []

    result = runner.invoke(main, ["repo", "list", "-w", "globex"])

    assert result.exit_code == 0
    assert "No repositories found in workspace 'globex'" in result.output


def test_config_set_and_get(runner, config_dir):
    result = runner.invoke(main, ["config", "set", "workspace", "acme"])
    assert result.exit_code == 0, result.output
    assert "profile.default.workspace" in result.output

    result = runner.invoke(main, ["config", "get", "workspace"])
    assert result.exit_code == 0, result.output
    assert result.output.strip() == "acme"

    assert get_config_value("profile.default.workspace", get_global_config_path()) == "acme"


def test_config_get_missing_key(runner, config_dir):
    result = runner.invoke(main, ["config", "get", "workspace"])

    assert result.exit_code == 1
    assert "'profile.default.workspace' is not set" in result.output


def test_config_set_unknown_key(runner, config_dir):
    result = runner.invoke(main, ["config", "set", "profile.default.colour", "blue"])

    assert result.exit_code == 1
    assert "Unknown config key" in result.output


def test_config_set_local(runner, config_dir):
    result = runner.invoke(main, ["config", "set", "--local", "repository", "widgets"])

    assert result.exit_code == 0, result.output
    assert get_config_value("project.repository", config_dir / ".bbscope") == "widgets"


def test_config_init_local(runner, config_dir):
    result = runner.invoke(main, ["config", "init", "--local"], input="acme\nwidgets\n\n")

    assert result.exit_code == 0, result.output
    assert get_config_value("project.workspace", config_dir / ".bbscope") == "acme"
    assert get_config_value("project.remote", config_dir / ".bbscope") == "origin"


def test_config_list_json(runner, config_dir):
    runner.invoke(main, ["config", "set", "workspace", "acme"])

    result = runner.invoke(main, ["--json", "config", "list"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["profile"] == "default"
    assert data["workspace"] == "acme"
    assert data["api_url"] == "https://api.bitbucket.org/2.0"


def test_auth_login_saves_after_verification(runner, config_dir):
    with patch("bbscope.cli.BitbucketClient") as client_cls, \
            patch("bbscope.cli.CredentialStore") as store_cls:
        client_cls.return_value.get_current_user.return_value = User(display_name="Jane Doe", uuid="{u1}")

        result = runner.invoke(main, ["auth", "login", "-u", "jdoe"], input="app-password\n")

    assert result.exit_code == 0, result.output
    client_cls.assert_called_once_with("https://api.bitbucket.org/2.0", auth=("jdoe", "app-password"))
    store_cls.return_value.save.assert_called_once_with("jdoe", "app-password")
    assert get_config_value("profile.default.user", get_global_config_path()) == "jdoe"
    assert "Authenticated as Jane Doe" in result.output


def test_auth_login_rejected(runner, config_dir):
    with patch("bbscope.cli.BitbucketClient") as client_cls, \
            patch("bbscope.cli.CredentialStore") as store_cls:
        client_cls.return_value.get_current_user.side_effect = RequestFailedError(401, "Unauthorized")

        result = runner.invoke(main, ["auth", "login", "-u", "jdoe"], input="wrong\n")

    assert result.exit_code == 1
    assert "Authentication failed for 'jdoe'" in result.output
    store_cls.return_value.save.assert_not_called()
    assert get_config_value("profile.default.user", get_global_config_path()) is None


def test_auth_login_reports_stored_secret_when_profile_write_fails(runner, config_dir):
    with patch("bbscope.cli.BitbucketClient") as client_cls, \
            patch("bbscope.cli.CredentialStore") as store_cls, \
            patch("bbscope.cli.set_config_value", side_effect=ConfigError("Cannot write config file")):
        client_cls.return_value.get_current_user.return_value = User(display_name="Jane Doe", uuid="{u1}")

        result = runner.invoke(main, ["auth", "login", "-u", "jdoe"], input="app-password\n")

    assert result.exit_code == 1
    store_cls.return_value.save.assert_called_once_with("jdoe", "app-password")
    assert "were saved to the keyring" in result.output
    assert "bbscope config set user jdoe" in result.output
    assert "Cannot write config file" in result.output


def test_auth_status_without_user(runner, config_dir):
    result = runner.invoke(main, ["auth", "status"])

    assert result.exit_code == 1
    assert "No user configured in profile 'default'" in result.output


def test_auth_logout(runner, config_dir):
    with patch("bbscope.cli.CredentialStore") as store_cls:
        result = runner.invoke(main, ["auth", "logout", "-u", "jdoe"])

    assert result.exit_code == 0
    store_cls.return_value.delete.assert_called_once_with("jdoe")
