"""
Terminal output helpers: status messages, tables, JSON and paging.
"""

from __future__ import annotations

import json
import logging
import shutil
import sys
from dataclasses import asdict, is_dataclass
from typing import Any, Sequence

import click

from .bitbucket import Comment, CommitStatus, PullRequest, Repository


logger = logging.getLogger(__name__)

STATUS_COLORS = {
    "SUCCESSFUL": "green",
    "FAILED": "red",
    "INPROGRESS": "yellow",
    "STOPPED": "bright_black",
}

PR_STATE_COLORS = {
    "OPEN": "green",
    "MERGED": "magenta",
    "DECLINED": "red",
    "SUPERSEDED": "bright_black",
}


def success(message: str) -> None:
    click.echo(f"{click.style('✅', fg='green')} {message}")


def info(message: str) -> None:
    click.echo(f"ℹ️  {message}")


def warning(message: str) -> None:
    click.echo(f"⚠️  {message}", err=True)


def error(message: str) -> None:
    click.echo(f"{click.style('❌ Error:', fg='red', bold=True)} {message}", err=True)


def to_jsonable(data: Any) -> Any:
    if is_dataclass(data) and not isinstance(data, type):
        return asdict(data)
    if isinstance(data, (list, tuple)):
        return [to_jsonable(item) for item in data]
    if isinstance(data, dict):
        return {key: to_jsonable(value) for key, value in data.items()}
    return data


def print_json(data: Any) -> None:
    click.echo(json.dumps(to_jsonable(data), indent=2))


def should_use_pager(text: str) -> bool:
    if not sys.stdout.isatty():
        return False
    height = shutil.get_terminal_size().lines
    return text.count("\n") > height


def page_output(text: str) -> None:
    """Show ``text`` through a pager when it is taller than the terminal."""
    if should_use_pager(text):
        try:
            click.echo_via_pager(text)
            return
        except OSError as e:
            logger.debug("Pager failed, printing directly: %s", e)
    click.echo(text, nl=not text.endswith("\n"))


def format_table(headers: Sequence[str], rows: Sequence[Sequence[str]], colors: Sequence[str | None] | None = None) -> str:
    """
    Plain aligned columns. ``colors`` optionally gives a foreground color
    per row for the second column (typically a state).
    """
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    lines = ["  ".join(click.style(h.ljust(widths[i]), bold=True) for i, h in enumerate(headers)).rstrip()]
    lines.append("  ".join("─" * w for w in widths))
    for index, row in enumerate(rows):
        cells = [cell.ljust(widths[i]) for i, cell in enumerate(row)]
        color = colors[index] if colors else None
        if color and len(cells) > 1:
            cells[1] = click.style(cells[1], fg=color)
        lines.append("  ".join(cells).rstrip())
    return "\n".join(lines) + "\n"


def _shorten(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 1] + "…"


def format_pr_list(prs: Sequence[PullRequest]) -> str:
    rows = [
        [
            f"#{pr.id}",
            pr.state,
            _shorten(pr.title, 60),
            pr.author,
            f"{pr.source_branch} → {pr.destination_branch}",
        ]
        for pr in prs
    ]
    colors = [PR_STATE_COLORS.get(pr.state) for pr in prs]
    return format_table(["ID", "State", "Title", "Author", "Branches"], rows, colors)


def format_repo_list(repos: Sequence[Repository]) -> str:
    rows = [
        [
            repo.name,
            "private" if repo.is_private else "public",
            repo.full_name,
            repo.language or "-",
            (repo.updated_on or "-")[:10],
        ]
        for repo in repos
    ]
    colors = ["yellow" if repo.is_private else "green" for repo in repos]
    return format_table(["Name", "Visibility", "Full Name", "Language", "Updated"], rows, colors)


def print_pr_details(pr: PullRequest, statuses: Sequence[CommitStatus] = ()) -> None:
    state_color = PR_STATE_COLORS.get(pr.state)
    click.echo(click.style(f"#{pr.id} {pr.title}", bold=True))
    click.echo(f"  State:       {click.style(pr.state, fg=state_color)}")
    click.echo(f"  Author:      {pr.author}")
    click.echo(f"  Branches:    {pr.source_branch} → {pr.destination_branch}")
    if pr.updated_on:
        click.echo(f"  Updated:     {pr.updated_on}")
    click.echo(f"  Link:        {pr.html_url}")

    if pr.description:
        click.echo(f"\n{pr.description}")

    if pr.approved_by:
        click.echo("\nApprovals:")
        for name in pr.approved_by:
            click.echo(f"  ✓ {name}")

    if statuses:
        click.echo("\nBuild Status:")
        for status in statuses:
            label = status.name or status.key
            state = click.style(status.state, fg=STATUS_COLORS.get(status.state), bold=True)
            click.echo(f"  {state}  {label}")
            if status.url:
                click.echo(f"      {status.url}")


def print_comments(comments: Sequence[Comment]) -> None:
    if not comments:
        return
    click.echo("\nComments:")
    for comment in comments:
        click.echo("─" * 50)
        click.echo(f"{click.style(comment.author, bold=True)} ({comment.created_on or 'unknown'})")
        if comment.inline_path:
            location = comment.inline_path
            if comment.inline_line:
                location += f":{comment.inline_line}"
            click.echo(click.style(f"  on {location}", fg="cyan"))
        click.echo(f"\n{comment.content}\n")
