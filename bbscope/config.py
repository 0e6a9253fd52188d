"""
Configuration management for bbscope.

Two TOML files:
- <config dir>/bbscope/config.toml: global profiles
  ([profile.<name>] tables plus a top-level ``default_profile`` key)
- .bbscope: per-checkout overrides ([project] table), found by walking
  up from the working directory
"""

from __future__ import annotations

import os
import sys
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import TOMLKitError

from .errors import ConfigError, KeyConflictError


CONFIG_DIR_NAME = "bbscope"
CONFIG_FILE_NAME = "config.toml"
LOCAL_CONFIG_FILE_NAME = ".bbscope"
DEFAULT_API_URL = "https://api.bitbucket.org/2.0"
DEFAULT_PROFILE = "default"

PROFILE_FIELDS = ("workspace", "user", "repository", "api_url", "remote", "output_format")
PROJECT_FIELDS = ("workspace", "repository", "remote")


@dataclass
class Profile:
    """A named bundle of defaults selectable with --profile."""
    name: str
    workspace: str | None = None
    user: str | None = None
    repository: str | None = None
    api_url: str | None = None
    remote: str | None = None
    output_format: str | None = None

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "Profile":
        values = {key: _as_str(data.get(key)) for key in PROFILE_FIELDS}
        return cls(name=name, **values)


@dataclass
class GlobalConfig:
    """Global profile store."""
    default_profile: str | None = None
    profiles: dict[str, Profile] = field(default_factory=dict)
    path: Path | None = None

    def active_profile_name(self, override: str | None = None) -> str:
        return override or self.default_profile or DEFAULT_PROFILE

    def get_active_profile(self, override: str | None = None) -> Profile | None:
        return self.profiles.get(self.active_profile_name(override))

    @classmethod
    def load(cls, path: Path | None = None) -> "GlobalConfig":
        """Load the global config; a missing file yields an empty config."""
        path = path or get_global_config_path()
        if not path.exists():
            return cls(path=path)
        data = read_toml(path).unwrap()
        return cls._parse(data, path)

    @classmethod
    def _parse(cls, data: dict[str, Any], path: Path | None) -> "GlobalConfig":
        config = cls(default_profile=_as_str(data.get("default_profile")), path=path)

        profiles_data = data.get("profile", {})
        if not isinstance(profiles_data, dict):
            raise ConfigError(f"'profile' must be a table in {path}")

        for name, profile_data in profiles_data.items():
            if isinstance(profile_data, dict):
                config.profiles[name] = Profile.from_dict(name, profile_data)

        return config


@dataclass
class ProjectConfig:
    """Per-checkout overrides from the .bbscope marker file."""
    workspace: str | None = None
    repository: str | None = None
    remote: str | None = None
    path: Path | None = None

    @classmethod
    def load(cls, cwd: Path | None = None, repo_root: Path | None = None) -> "ProjectConfig | None":
        """Load the nearest .bbscope file, or None if there is none."""
        path = find_local_config(cwd, repo_root)
        if path is None:
            return None
        data = read_toml(path).unwrap()
        project_data = data.get("project", {})
        if not isinstance(project_data, dict):
            raise ConfigError(f"'project' must be a table in {path}")
        return cls(
            workspace=_as_str(project_data.get("workspace")),
            repository=_as_str(project_data.get("repository")),
            remote=_as_str(project_data.get("remote")),
            path=path,
        )


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def get_config_dir() -> Path:
    """Platform configuration directory (not including the bbscope part)."""
    override = os.environ.get("BBSCOPE_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    if sys.platform == "win32" and os.environ.get("APPDATA"):
        return Path(os.environ["APPDATA"])
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg).expanduser()
    return Path.home() / ".config"


def get_global_config_path() -> Path:
    return get_config_dir() / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def find_local_config(start: Path | None = None, repo_root: Path | None = None) -> Path | None:
    """
    Walk up from ``start`` looking for the .bbscope marker file.

    When ``repo_root`` is known the walk stops there instead of at the
    filesystem root.
    """
    current = (start or Path.cwd()).resolve()
    stop = repo_root.resolve() if repo_root else None

    if stop is not None and stop != current and stop not in current.parents:
        # cwd is outside the detected checkout; only the root itself counts
        candidate = stop / LOCAL_CONFIG_FILE_NAME
        return candidate if candidate.is_file() else None

    while True:
        candidate = current / LOCAL_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
        if current == stop or current == current.parent:
            return None
        current = current.parent


def read_toml(path: Path) -> tomlkit.TOMLDocument:
    try:
        return tomlkit.parse(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}") from e
    except TOMLKitError as e:
        raise ConfigError(f"Invalid TOML in {path}") from e


def expand_key(key: str, profile_name: str = DEFAULT_PROFILE, local: bool = False) -> str:
    """Expand shortcut keys (``workspace``) to their full dotted form."""
    if "." in key:
        return key
    if local and key in PROJECT_FIELDS:
        return f"project.{key}"
    if not local and key in PROFILE_FIELDS:
        return f"profile.{profile_name}.{key}"
    return key


def validate_key(key: str, local: bool = False) -> None:
    """Reject keys outside the known config layout."""
    parts = key.split(".")
    if any(not part for part in parts):
        raise ConfigError(f"Invalid config key '{key}'")

    if local:
        if len(parts) == 2 and parts[0] == "project" and parts[1] in PROJECT_FIELDS:
            return
        valid = ", ".join(f"project.{f}" for f in PROJECT_FIELDS)
        raise ConfigError(f"Unknown local config key '{key}'. Valid keys: {valid}")

    if parts == ["default_profile"]:
        return
    if len(parts) == 3 and parts[0] == "profile" and parts[2] in PROFILE_FIELDS:
        return
    raise ConfigError(
        f"Unknown config key '{key}'. Valid keys: default_profile, "
        f"profile.<name>.{{{','.join(PROFILE_FIELDS)}}}"
    )


def set_config_value(key: str, value: str, path: Path | None = None, local: bool = False) -> Path:
    """
    Set a dotted key in a TOML config file and rewrite it.

    Intermediate tables are created as needed; unrelated keys, comments and
    formatting are preserved. Returns the path written.

    Raises:
        KeyConflictError: an intermediate segment holds a non-table value
    """
    validate_key(key, local=local)
    path = path or get_global_config_path()

    doc = read_toml(path) if path.exists() else tomlkit.document()

    parts = key.split(".")
    table: MutableMapping[str, Any] = doc
    for depth, part in enumerate(parts[:-1]):
        if part not in table:
            # Only the innermost table needs its own [header]
            is_super = depth < len(parts) - 2
            table[part] = tomlkit.table(is_super_table=is_super or None)
        node = table[part]
        if not isinstance(node, MutableMapping):
            raise KeyConflictError(key, part)
        table = node

    table[parts[-1]] = value
    _write_atomic(path, tomlkit.dumps(doc))
    return path


def get_config_value(key: str, path: Path | None = None) -> Any:
    """Look up a dotted key in a config file, or None if unset."""
    path = path or get_global_config_path()
    if not path.exists():
        return None
    node: Any = read_toml(path).unwrap()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def init_local_config(
    directory: Path,
    workspace: str | None,
    repository: str | None,
    remote: str | None,
) -> Path:
    """Create a .bbscope file in ``directory``; refuses to overwrite."""
    path = directory / LOCAL_CONFIG_FILE_NAME
    if path.exists():
        raise ConfigError(f"Local configuration file already exists at {path}")

    doc = tomlkit.document()
    project = tomlkit.table()
    for name, value in (("workspace", workspace), ("repository", repository), ("remote", remote)):
        if value:
            project[name] = value
    doc["project"] = project

    _write_atomic(path, tomlkit.dumps(doc))
    return path


def _write_atomic(path: Path, content: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        raise ConfigError(f"Cannot write config file {path}") from e
