"""
Exception types used across bbscope.

Every error the CLI reports to the user derives from BbscopeError; anything
else escaping a command is a bug.
"""

from __future__ import annotations


class BbscopeError(Exception):
    """Base class for all bbscope errors."""


class RemoteParseError(BbscopeError):
    """A git remote URL could not be turned into workspace/repository."""

    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.url = url


class UnrecognizedHostError(RemoteParseError):
    """The remote does not point at the Bitbucket host."""


class MalformedPathError(RemoteParseError):
    """The remote path has no workspace/repository separator."""


class GitError(BbscopeError):
    """Raised when a git subprocess fails."""


class ConfigError(BbscopeError):
    """Config file could not be read, written or addressed."""


class KeyConflictError(ConfigError):
    """A dotted key passes through an existing non-table value."""

    def __init__(self, key: str, segment: str):
        super().__init__(f"Config key conflict at '{segment}' while setting '{key}'")
        self.key = key
        self.segment = segment


class AuthError(BbscopeError):
    """Credential store failure or missing credentials."""


class CredentialNotFoundError(AuthError):
    """No secret is stored for the requested username."""

    def __init__(self, username: str):
        super().__init__(f"No credentials stored for user '{username}'")
        self.username = username


class ContextError(BbscopeError):
    """A coordinate required by the command could not be resolved."""


class NoRepositoryError(ContextError):
    def __init__(self) -> None:
        super().__init__(
            "No repository found. Run inside a Bitbucket checkout, pass "
            "--repo WORKSPACE/REPO, or run: bbscope config init --local"
        )


class NoWorkspaceError(ContextError):
    def __init__(self) -> None:
        super().__init__(
            "No workspace found. Pass --repo WORKSPACE/REPO or run: "
            "bbscope config set workspace <name>"
        )


class ApiError(BbscopeError):
    """Error talking to the Bitbucket API."""


class TransportError(ApiError):
    """The HTTP request never produced a response."""


class RequestFailedError(ApiError):
    """The API answered with a non-2xx status."""

    def __init__(self, status: int, body: str, url: str | None = None):
        target = f" for {url}" if url else ""
        super().__init__(f"API request failed ({status}){target}: {body}")
        self.status = status
        self.body = body
        self.url = url


class DecodeFailedError(ApiError):
    """The response body did not have the expected shape."""


def describe_error(exc: BaseException) -> str:
    """Render an exception and its causes as one line, outermost first."""
    parts: list[str] = []
    current: BaseException | None = exc
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        text = str(current) or type(current).__name__
        if not parts or parts[-1] != text:
            parts.append(text)
        current = current.__cause__
    return ": ".join(parts)
