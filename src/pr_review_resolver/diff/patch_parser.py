"""Unified-diff patch parsing.

This module turns the textual patch the host attaches to each changed file
into ``ParsedFileDiff`` objects with typed, numbered lines. Parsing is pure
and never raises on malformed input: lines that cannot be placed are dropped
and the result is flagged as degraded.
"""

import logging
import re
from collections.abc import Iterable

from ..core.models import DiffHunk, DiffLine, FileDiffEntry, LineKind, ParsedFileDiff

logger = logging.getLogger(__name__)

HUNK_HEADER_PATTERN = re.compile(r"^@@\s+-(\d+)(?:,(\d+))?\s+\+(\d+)(?:,(\d+))?\s+@@(.*)$")

# Git file headers that legitimately precede the first hunk of a full patch
_FILE_HEADER_PREFIXES = (
    "diff --git ",
    "index ",
    "--- ",
    "+++ ",
    "new file mode ",
    "deleted file mode ",
    "old mode ",
    "new mode ",
    "similarity index ",
    "dissimilarity index ",
    "rename from ",
    "rename to ",
    "copy from ",
    "copy to ",
    "Binary files ",
)


class _HunkBuilder:
    """Accumulates the lines of one hunk while tracking both line counters."""

    def __init__(self, header: str, match: re.Match[str]) -> None:
        self.header = header
        self.old_start = int(match.group(1))
        self.old_count = int(match.group(2)) if match.group(2) is not None else 1
        self.new_start = int(match.group(3))
        self.new_count = int(match.group(4)) if match.group(4) is not None else 1
        self.section = (match.group(5) or "").strip()
        self.old_line = self.old_start
        self.new_line = self.new_start
        self.lines: list[DiffLine] = []

    def add(self, raw_line: str) -> None:
        marker = raw_line[:1]
        if marker == "+":
            self.lines.append(
                DiffLine(kind=LineKind.ADDITION, content=raw_line[1:], new_line_number=self.new_line)
            )
            self.new_line += 1
        elif marker == "-":
            self.lines.append(
                DiffLine(kind=LineKind.DELETION, content=raw_line[1:], old_line_number=self.old_line)
            )
            self.old_line += 1
        elif marker == "\\":
            # "\ No newline at end of file"
            return
        else:
            # The first column is always the marker, whatever character it is
            self.lines.append(
                DiffLine(
                    kind=LineKind.CONTEXT,
                    content=raw_line[1:],
                    old_line_number=self.old_line,
                    new_line_number=self.new_line,
                )
            )
            self.old_line += 1
            self.new_line += 1

    def is_complete(self) -> bool:
        """Return True when the consumed lines match the header counts."""
        return (
            self.old_line - self.old_start == self.old_count
            and self.new_line - self.new_start == self.new_count
        )

    def build(self) -> DiffHunk:
        return DiffHunk(
            header=self.header,
            old_start=self.old_start,
            old_count=self.old_count,
            new_start=self.new_start,
            new_count=self.new_count,
            lines=tuple(self.lines),
            section=self.section,
        )


def split_patch_lines(patch: str) -> list[str]:
    """Split patch text into raw lines.

    A single trailing newline does not produce an extra empty row, and
    carriage returns from CRLF patches are stripped.
    """
    lines = patch.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def parse_patch(file_meta: FileDiffEntry, patch_text: str | None) -> ParsedFileDiff:
    """Parse one file's unified-diff patch.

    Args:
        file_meta: Host metadata for the file (path, status, counts).
        patch_text: The textual patch, or None when the host supplied none
            (binary or too-large files).

    Returns:
        ParsedFileDiff: The parsed diff. When ``patch_text`` is None or empty
            the result is a binary placeholder with no hunks. Lines found
            before the first hunk header (other than git file headers) and
            hunks whose line counts disagree with their header mark the
            result as degraded.
    """
    if not patch_text:
        return ParsedFileDiff(
            path=file_meta.path,
            status=file_meta.status,
            additions=file_meta.additions,
            deletions=file_meta.deletions,
            is_binary=True,
            previous_path=file_meta.previous_path,
        )

    builders: list[_HunkBuilder] = []
    current: _HunkBuilder | None = None
    dropped = 0

    for raw_line in split_patch_lines(patch_text):
        match = HUNK_HEADER_PATTERN.match(raw_line)
        if match:
            current = _HunkBuilder(raw_line, match)
            builders.append(current)
            continue

        if current is None:
            if not raw_line.startswith(_FILE_HEADER_PREFIXES):
                dropped += 1
            continue

        current.add(raw_line)

    incomplete = [b.header for b in builders if not b.is_complete()]
    degraded = dropped > 0 or bool(incomplete)
    if dropped:
        logger.debug(f"Dropped {dropped} line(s) before first hunk header in {file_meta.path}")
    if incomplete:
        logger.debug(f"Hunk line counts disagree with headers in {file_meta.path}: {incomplete}")

    return ParsedFileDiff(
        path=file_meta.path,
        status=file_meta.status,
        additions=file_meta.additions,
        deletions=file_meta.deletions,
        is_binary=False,
        hunks=tuple(builder.build() for builder in builders),
        previous_path=file_meta.previous_path,
        degraded=degraded,
    )


def parse_file_entry(entry: FileDiffEntry) -> ParsedFileDiff:
    """Parse the patch carried by a file-diff entry."""
    return parse_patch(entry, entry.patch)


def parse_file_entries(entries: Iterable[FileDiffEntry]) -> list[ParsedFileDiff]:
    """Parse every entry of a pull-request or comparison file list, in order."""
    return [parse_file_entry(entry) for entry in entries]
