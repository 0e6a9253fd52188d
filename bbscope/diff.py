"""
Unified diff handling for bbscope.

Splits a pull request diff into per-file segments, filters them by glob
pattern and size, and colorizes the result for the terminal.

Lines keep their original line endings so that joining every segment
reproduces the payload byte-for-byte.
"""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass, field
from typing import Iterable

import click


DIFF_HEADER = "diff --git "


@dataclass
class FileDiff:
    """One ``diff --git`` section of a unified diff."""
    path: str
    raw_lines: list[str]
    # Number of lines replaced by a truncation placeholder
    omitted: int = 0

    @property
    def header(self) -> str:
        return self.raw_lines[0] if self.raw_lines else ""

    @property
    def is_truncated(self) -> bool:
        return self.omitted > 0


@dataclass
class DiffDocument:
    files: list[FileDiff] = field(default_factory=list)
    # Anything before the first file header (e.g. commit metadata)
    preamble: list[str] = field(default_factory=list)

    def text(self) -> str:
        return "".join(self.preamble) + "".join("".join(f.raw_lines) for f in self.files)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]


def split_lines(text: str) -> list[str]:
    """Split on newlines, keeping them attached to each line."""
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def extract_path(header_line: str) -> str:
    """
    Destination path from a ``diff --git a/path b/path`` header.

    Paths may contain spaces, so the split is on the last `` b/``; headers
    with an unexpected shape fall back to everything after the marker.
    """
    rest = header_line[len(DIFF_HEADER):].rstrip("\r\n")
    _, sep, path = rest.rpartition(" b/")
    if sep and path:
        return path
    return rest.strip()


def parse_diff(raw_diff: str) -> DiffDocument:
    """Segment a unified diff into FileDiff objects."""
    document = DiffDocument()
    current: FileDiff | None = None

    for line in split_lines(raw_diff):
        if line.startswith(DIFF_HEADER):
            current = FileDiff(path=extract_path(line), raw_lines=[line])
            document.files.append(current)
        elif current is None:
            document.preamble.append(line)
        else:
            current.raw_lines.append(line)

    return document


def match_path_glob(pattern: str, file_path: str) -> bool:
    """Check if a file path matches a glob pattern."""
    pattern = pattern.replace("\\", "/")
    file_path = file_path.replace("\\", "/")

    # "src/" selects everything below src
    if pattern.endswith("/"):
        return file_path.startswith(pattern)

    if "**" in pattern:
        regex_pattern = re.escape(pattern)
        regex_pattern = regex_pattern.replace(r"\*\*/", "(?:.*/)?")
        regex_pattern = regex_pattern.replace(r"\*\*", ".*")
        regex_pattern = regex_pattern.replace(r"\*", "[^/]*")
        regex_pattern = regex_pattern.replace(r"\?", "[^/]")
        return bool(re.fullmatch(regex_pattern, file_path))

    return fnmatch.fnmatchcase(file_path, pattern)


def matches_any(file_path: str, patterns: Iterable[str]) -> bool:
    """True when ``patterns`` is empty or any of them matches."""
    patterns = list(patterns)
    if not patterns:
        return True
    return any(match_path_glob(p, file_path) for p in patterns)


def truncate_file(file_diff: FileDiff, max_lines: int) -> FileDiff:
    """Replace a segment longer than ``max_lines`` with a placeholder."""
    if len(file_diff.raw_lines) <= max_lines:
        return file_diff

    header = file_diff.header
    if not header.endswith("\n"):
        header += "\n"
    omitted = len(file_diff.raw_lines) - 1
    placeholder = f"... {omitted} lines omitted (file diff exceeds {max_lines} lines)\n"
    return FileDiff(path=file_diff.path, raw_lines=[header, placeholder], omitted=omitted)


def filter_diff(
    diff: DiffDocument,
    include_patterns: Iterable[str] = (),
    max_lines_per_file: int | None = None,
) -> DiffDocument:
    """
    Keep files matching ``include_patterns`` and shrink oversized ones.

    With no patterns and no size limit the document is returned unchanged.
    """
    patterns = list(include_patterns)
    files: list[FileDiff] = []
    for file_diff in diff.files:
        if not matches_any(file_diff.path, patterns):
            continue
        if max_lines_per_file is not None:
            file_diff = truncate_file(file_diff, max_lines_per_file)
        files.append(file_diff)
    return DiffDocument(files=files, preamble=list(diff.preamble))


def filenames_only(diff: DiffDocument, include_patterns: Iterable[str] = ()) -> list[str]:
    """Destination paths of the files that pass the pattern filter."""
    patterns = list(include_patterns)
    return [f.path for f in diff.files if matches_any(f.path, patterns)]


def colorize_line(line: str) -> str:
    """Style a single diff line by its prefix, keeping its line ending."""
    content = line.rstrip("\r\n")
    ending = line[len(content):]
    if not content:
        return line

    if content.startswith(("+++", "---")):
        styled = click.style(content, bold=True)
    elif content.startswith("@@"):
        styled = click.style(content, fg="cyan")
    elif content.startswith("+"):
        styled = click.style(content, fg="green")
    elif content.startswith("-"):
        styled = click.style(content, fg="red")
    elif content.startswith((DIFF_HEADER, "index ")):
        styled = click.style(content, bold=True)
    else:
        styled = click.style(content, fg="bright_black")
    return styled + ending


def colorize(diff: DiffDocument) -> str:
    """Colorized text of an (already filtered) diff."""
    return "".join(colorize_line(line) for line in split_lines(diff.text()))
