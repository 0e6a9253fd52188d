"""
Bitbucket Cloud REST API (2.0) client for bbscope.

Every list endpoint returns ``{"values": [...], "next": "<url>"}``; the
client follows ``next`` until it is absent or the caller's limit is reached.
Authentication is HTTP Basic with (username, app password).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar
from urllib.parse import quote

import requests

from . import __version__
from .config import DEFAULT_API_URL
from .errors import (
    AuthError,
    DecodeFailedError,
    RequestFailedError,
    TransportError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class User:
    display_name: str
    uuid: str
    nickname: str | None = None


@dataclass
class PullRequest:
    """Parsed Bitbucket pull request."""
    id: int
    title: str
    state: str
    author: str
    source_branch: str
    destination_branch: str
    html_url: str
    description: str | None = None
    source_commit: str | None = None
    created_on: str | None = None
    updated_on: str | None = None
    comment_count: int = 0
    approved_by: list[str] = field(default_factory=list)


@dataclass
class Comment:
    id: int
    author: str
    content: str
    created_on: str | None = None
    inline_path: str | None = None
    inline_line: int | None = None


@dataclass
class Repository:
    name: str
    full_name: str
    uuid: str | None = None
    language: str | None = None
    updated_on: str | None = None
    is_private: bool = False


@dataclass
class CommitStatus:
    """Build status reported against a commit."""
    key: str
    state: str
    name: str | None = None
    url: str | None = None


def parse_user(data: dict[str, Any]) -> User:
    return User(
        display_name=data.get("display_name") or data.get("nickname") or "",
        uuid=data.get("uuid", ""),
        nickname=data.get("nickname"),
    )


def parse_pull_request(data: dict[str, Any]) -> PullRequest:
    source = data.get("source") or {}
    destination = data.get("destination") or {}
    participants = data.get("participants") or []

    return PullRequest(
        id=int(data["id"]),
        title=data["title"],
        state=data.get("state", ""),
        author=parse_user(data.get("author") or {}).display_name,
        source_branch=(source.get("branch") or {}).get("name", ""),
        destination_branch=(destination.get("branch") or {}).get("name", ""),
        html_url=((data.get("links") or {}).get("html") or {}).get("href", ""),
        description=data.get("description") or None,
        source_commit=(source.get("commit") or {}).get("hash"),
        created_on=data.get("created_on"),
        updated_on=data.get("updated_on"),
        comment_count=data.get("comment_count", 0),
        approved_by=[
            parse_user(p.get("user") or {}).display_name
            for p in participants
            if p.get("approved")
        ],
    )


def parse_comment(data: dict[str, Any]) -> Comment:
    inline = data.get("inline") or {}
    return Comment(
        id=int(data["id"]),
        author=parse_user(data.get("user") or {}).display_name,
        content=(data.get("content") or {}).get("raw", ""),
        created_on=data.get("created_on"),
        inline_path=inline.get("path"),
        inline_line=inline.get("to") or inline.get("from"),
    )


def parse_repository(data: dict[str, Any]) -> Repository:
    return Repository(
        name=data["name"],
        full_name=data["full_name"],
        uuid=data.get("uuid"),
        language=data.get("language") or None,
        updated_on=data.get("updated_on"),
        is_private=bool(data.get("is_private", False)),
    )


def parse_commit_status(data: dict[str, Any]) -> CommitStatus:
    return CommitStatus(
        key=data["key"],
        state=data["state"],
        name=data.get("name"),
        url=data.get("url"),
    )


class BitbucketClient:
    """Bitbucket REST API client with cursor pagination."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        auth: tuple[str, str] | None = None,
        auth_error: AuthError | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        # Why credentials are missing, reported if the API rejects us
        self.auth_error = auth_error
        self.session = requests.Session()

        if auth:
            self.session.auth = auth

        self.session.headers["Accept"] = "application/json"
        self.session.headers["User-Agent"] = f"bbscope/{__version__}"

    @property
    def is_authenticated(self) -> bool:
        return self.session.auth is not None

    def url_for(self, path: str) -> str:
        """Absolute URL for an API path; absolute URLs pass through."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        url = self.url_for(path)
        logger.debug("Requesting: %s %s", method, url)

        try:
            response = self.session.request(method, url, params=params, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"Request to {url} failed") from e

        logger.debug("Response status: %s", response.status_code)

        if not 200 <= response.status_code < 300:
            error = RequestFailedError(response.status_code, response.text, url)
            if response.status_code in (401, 403) and self.auth_error is not None:
                raise AuthError(
                    f"Authentication required ({self.auth_error}). Run: bbscope auth login"
                ) from error
            raise error

        return response

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = self._request("GET", path, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise DecodeFailedError(f"Response from {self.url_for(path)} is not valid JSON") from e

    @staticmethod
    def _decode(parse: Callable[[Any], T], data: Any) -> T:
        try:
            return parse(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DecodeFailedError(f"Unexpected response shape: {e!r}") from e

    @staticmethod
    def _page_values(page: Any) -> tuple[list[Any], str | None]:
        if not isinstance(page, dict) or not isinstance(page.get("values"), list):
            raise DecodeFailedError("Paginated response is missing a 'values' list")
        next_cursor = page.get("next")
        if next_cursor is not None and not isinstance(next_cursor, str):
            raise DecodeFailedError("Paginated response has a non-string 'next' link")
        return page["values"], next_cursor or None

    def list_paginated(
        self,
        path: str,
        parse: Callable[[Any], T],
        limit: int | None = None,
        params: dict[str, Any] | None = None,
    ) -> list[T]:
        """
        Follow ``next`` links from ``path`` and collect parsed items.

        Stops after the page that brings the total to ``limit`` (truncating
        to exactly ``limit``) or when a page has no ``next`` link.
        """
        items: list[T] = []
        next_path: str | None = path

        while next_path:
            page = self._get_json(next_path, params)
            values, next_cursor = self._page_values(page)
            items.extend(self._decode(parse, value) for value in values)

            if limit is not None and len(items) >= limit:
                del items[limit:]
                break

            # The next link already carries the query string
            next_path, params = next_cursor, None

        logger.debug("Fetched %d items from %s", len(items), path)
        return items

    def _repo_path(self, workspace: str, repo: str) -> str:
        return f"/repositories/{quote(workspace, safe='')}/{quote(repo, safe='')}"

    def list_pull_requests(
        self,
        workspace: str,
        repo: str,
        state: str = "OPEN",
        limit: int | None = None,
    ) -> list[PullRequest]:
        """
        List pull requests for a repository.

        Args:
            workspace: Workspace ID or slug
            repo: Repository slug
            state: OPEN, MERGED, DECLINED or SUPERSEDED
            limit: Maximum number of PRs to return
        """
        return self.list_paginated(
            f"{self._repo_path(workspace, repo)}/pullrequests",
            parse_pull_request,
            limit=limit,
            params={"state": state.upper()},
        )

    def list_repositories(self, workspace: str, limit: int | None = None) -> list[Repository]:
        return self.list_paginated(
            f"/repositories/{quote(workspace, safe='')}",
            parse_repository,
            limit=limit,
        )

    def list_pull_request_comments(
        self,
        workspace: str,
        repo: str,
        pr_id: int,
        limit: int | None = None,
    ) -> list[Comment]:
        return self.list_paginated(
            f"{self._repo_path(workspace, repo)}/pullrequests/{pr_id}/comments",
            parse_comment,
            limit=limit,
        )

    def list_commit_statuses(
        self,
        workspace: str,
        repo: str,
        commit_hash: str,
        limit: int | None = None,
    ) -> list[CommitStatus]:
        return self.list_paginated(
            f"{self._repo_path(workspace, repo)}/commit/{commit_hash}/statuses",
            parse_commit_status,
            limit=limit,
        )

    def get_pull_request(self, workspace: str, repo: str, pr_id: int) -> PullRequest:
        """Get a specific pull request."""
        data = self._get_json(f"{self._repo_path(workspace, repo)}/pullrequests/{pr_id}")
        return self._decode(parse_pull_request, data)

    def get_pull_request_diff(self, workspace: str, repo: str, pr_id: int) -> str:
        """Raw unified diff of a pull request."""
        response = self._request("GET", f"{self._repo_path(workspace, repo)}/pullrequests/{pr_id}/diff")
        return response.text

    def find_pull_request_by_branch(self, workspace: str, repo: str, branch: str) -> PullRequest | None:
        """First open pull request whose source branch is ``branch``."""
        page = self._get_json(
            f"{self._repo_path(workspace, repo)}/pullrequests",
            params={
                "q": f'source.branch.name="{branch}"',
                "state": "OPEN",
            },
        )
        values, _ = self._page_values(page)
        if not values:
            return None
        return self._decode(parse_pull_request, values[0])

    def get_current_user(self) -> User:
        """Get the authenticated user."""
        return self._decode(parse_user, self._get_json("/user"))

    def approve_pull_request(self, workspace: str, repo: str, pr_id: int) -> None:
        self._request("POST", f"{self._repo_path(workspace, repo)}/pullrequests/{pr_id}/approve")

    def request_changes(self, workspace: str, repo: str, pr_id: int) -> None:
        self._request("POST", f"{self._repo_path(workspace, repo)}/pullrequests/{pr_id}/request-changes")

    def post_comment(self, workspace: str, repo: str, pr_id: int, body: str) -> Comment:
        response = self._request(
            "POST",
            f"{self._repo_path(workspace, repo)}/pullrequests/{pr_id}/comments",
            json={"content": {"raw": body}},
        )
        try:
            data = response.json()
        except ValueError as e:
            raise DecodeFailedError("Comment response is not valid JSON") from e
        return self._decode(parse_comment, data)
