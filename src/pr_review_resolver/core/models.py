"""Data models for the review and conflict-resolution engine.

This module contains the value objects shared by the patch parser, the
comment index, the pending-review accumulator and the conflict-resolution
coordinator.

Diff structure:
    >>> from pr_review_resolver.core.models import DiffLine, LineKind, Side
    >>> line = DiffLine(kind=LineKind.DELETION, content="b", old_line_number=2)
    >>> line.anchor()
    (2, <Side.LEFT: 'LEFT'>)

Comment payloads from the host are normalized with ``ReviewComment.from_api``:
    >>> comment = ReviewComment.from_api(
    ...     {"path": "a.py", "line": 4, "side": "RIGHT", "body": "nit", "id": 1}
    ... )
    >>> (comment.line, comment.side)
    (4, <Side.RIGHT: 'RIGHT'>)

Most types are frozen. ``PendingReview`` and ``ConflictResolutionSession`` are
deliberately mutable: each is owned by exactly one workflow object which
mutates it in place while the user works.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeAlias


class LineKind(str, Enum):
    """Kind of a rendered diff row."""

    CONTEXT = "context"
    ADDITION = "addition"
    DELETION = "deletion"
    HUNK_HEADER = "hunk_header"


class Side(str, Enum):
    """Which version of a file a comment addresses.

    LEFT is the base (pre-change) version, RIGHT the head (post-change) version.
    """

    LEFT = "LEFT"
    RIGHT = "RIGHT"

    def __str__(self) -> str:
        """Return the wire value."""
        return self.value


class FileStatus(str, Enum):
    """File-level status reported by the host for a diff entry."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    RENAMED = "renamed"
    COPIED = "copied"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


class ReviewEvent(str, Enum):
    """Verdict attached to a submitted review."""

    APPROVE = "APPROVE"
    REQUEST_CHANGES = "REQUEST_CHANGES"
    COMMENT = "COMMENT"

    def __str__(self) -> str:
        """Return the wire value."""
        return self.value


class MergeState(str, Enum):
    """Classification of a merge status for remediation purposes."""

    CLEAN = "clean"
    BEHIND = "behind"
    HAS_CONFLICTS = "has_conflicts"
    UNKNOWN = "unknown"


# (line number, side) address of a comment on a diff
LineAnchor: TypeAlias = tuple[int, Side]


@dataclass(frozen=True, slots=True)
class DiffLine:
    """One rendered row of a diff.

    Context rows carry both line numbers, deletions only the old one and
    additions only the new one. The synthetic hunk-header row carries neither.
    """

    kind: LineKind
    content: str
    old_line_number: int | None = None
    new_line_number: int | None = None

    def __post_init__(self) -> None:
        """Validate the line-number invariant for the row kind.

        Raises:
            ValueError: If the line numbers present do not match the row kind.
        """
        has_old = self.old_line_number is not None
        has_new = self.new_line_number is not None
        expected = {
            LineKind.CONTEXT: (True, True),
            LineKind.ADDITION: (False, True),
            LineKind.DELETION: (True, False),
            LineKind.HUNK_HEADER: (False, False),
        }[self.kind]
        if (has_old, has_new) != expected:
            raise ValueError(
                f"{self.kind.value} line has old={self.old_line_number}, "
                f"new={self.new_line_number}"
            )

    def anchor(self) -> LineAnchor | None:
        """Return the (line, side) address used to attach comments to this row.

        Deletions are addressed on the LEFT side by their old line number;
        additions and context rows on the RIGHT side by their new line number.

        Returns:
            The anchor, or None for the hunk-header row.
        """
        if self.kind is LineKind.DELETION and self.old_line_number is not None:
            return (self.old_line_number, Side.LEFT)
        if self.new_line_number is None:
            return None
        return (self.new_line_number, Side.RIGHT)

    def anchors(self) -> tuple[LineAnchor, ...]:
        """Return every (line, side) address that refers to this row.

        Context rows exist on both sides, so a comment on either their old
        (LEFT) or new (RIGHT) line number belongs to them.
        """
        if self.kind is LineKind.CONTEXT:
            assert self.old_line_number is not None and self.new_line_number is not None
            return ((self.old_line_number, Side.LEFT), (self.new_line_number, Side.RIGHT))
        anchor = self.anchor()
        return () if anchor is None else (anchor,)


@dataclass(frozen=True, slots=True)
class DiffHunk:
    """A contiguous change region of a unified diff."""

    header: str
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: tuple[DiffLine, ...]
    section: str = ""

    def header_row(self) -> DiffLine:
        """Return the synthetic row that displays this hunk's header."""
        return DiffLine(kind=LineKind.HUNK_HEADER, content=self.header)


@dataclass(frozen=True, slots=True)
class ParsedFileDiff:
    """One file's full parsed diff.

    Attributes:
        path: Current path of the file.
        status: Host-reported file status.
        additions: Number of added lines reported by the host.
        deletions: Number of deleted lines reported by the host.
        is_binary: True when the host supplied no textual patch.
        hunks: Parsed hunks in patch order.
        previous_path: Former path for renamed files.
        degraded: True when the patch was malformed or truncated and lines
            had to be dropped while parsing.
    """

    path: str
    status: FileStatus
    additions: int
    deletions: int
    is_binary: bool
    hunks: tuple[DiffHunk, ...] = ()
    previous_path: str | None = None
    degraded: bool = False

    def __post_init__(self) -> None:
        """Reject binary diffs that claim to have hunks."""
        if self.is_binary and self.hunks:
            raise ValueError("binary file diff cannot contain hunks")

    def rows(self) -> Iterator[DiffLine]:
        """Yield each hunk's header row followed by its lines, in patch order."""
        for hunk in self.hunks:
            yield hunk.header_row()
            yield from hunk.lines

    def find_line(self, line: int, side: Side) -> DiffLine | None:
        """Return the row addressed by ``(line, side)``, if the diff shows it."""
        for hunk in self.hunks:
            for diff_line in hunk.lines:
                if (line, side) in diff_line.anchors():
                    return diff_line
        return None


@dataclass(frozen=True, slots=True)
class FileDiffEntry:
    """One file of a branch comparison or pull-request file list."""

    path: str
    status: FileStatus
    additions: int = 0
    deletions: int = 0
    patch: str | None = None
    previous_path: str | None = None
    version_token: str | None = None


@dataclass(frozen=True, slots=True)
class ReviewComment:
    """An existing, persisted inline review comment.

    ``line`` is None for comments that cannot be placed on a diff line
    (for example file-level comments or outdated comments with no position).
    """

    path: str
    line: int | None
    side: Side
    body: str
    id: int | None = None
    author: str | None = None
    position: int | None = None
    original_position: int | None = None
    in_reply_to_id: int | None = None
    url: str | None = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "ReviewComment":
        """Build a comment from a host payload, normalizing its anchor.

        An explicit ``side`` field wins. Payloads from the legacy anchoring
        scheme carry only a diff position; for those the side is RIGHT when a
        non-null ``position`` is present and LEFT otherwise. The line is the
        ``line`` field when present, then ``original_line``, and only then
        the position value. This mapping is an approximation for historical
        records.

        Args:
            payload: Raw review-comment JSON returned by the host.

        Returns:
            ReviewComment: The normalized comment.
        """
        position = payload.get("position")
        original_position = payload.get("original_position")

        raw_side = payload.get("side")
        if raw_side in (Side.LEFT.value, Side.RIGHT.value):
            side = Side(raw_side)
        else:
            side = Side.RIGHT if position is not None else Side.LEFT

        line = payload.get("line")
        if line is None:
            line = payload.get("original_line")
        if line is None:
            line = original_position if original_position is not None else position

        user = payload.get("user") or {}
        return cls(
            path=payload.get("path") or "",
            line=int(line) if line is not None else None,
            side=side,
            body=payload.get("body") or "",
            id=payload.get("id"),
            author=user.get("login"),
            position=position,
            original_position=original_position,
            in_reply_to_id=payload.get("in_reply_to_id"),
            url=payload.get("html_url"),
        )


@dataclass(frozen=True, slots=True)
class PendingComment:
    """A drafted inline comment that has not been submitted yet.

    ``local_id`` only identifies the draft on the client so it can be removed
    before submission; the host assigns a real id on submit.
    """

    local_id: str
    path: str
    line: int
    side: Side
    body: str

    def to_api(self) -> dict[str, Any]:
        """Return the review-comment payload used in a review submission."""
        return {
            "path": self.path,
            "line": self.line,
            "side": self.side.value,
            "body": self.body,
        }


@dataclass(slots=True)
class PendingReview:
    """Staged batch of drafted comments for one review target."""

    target_id: int
    comments: list[PendingComment] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class MergeStatus:
    """Mergeability of a change as reported by the host.

    Attributes:
        ahead_by: Commits on head not on base.
        behind_by: Commits on base not on head.
        mergeable: True/False, or None while the host is still computing it.
        mergeable_state: Host state string (clean, unstable, dirty, blocked,
            behind, unknown, ...).
        conflicting_files: Authoritative conflicting paths, when the host
            provides them.
        base_ref: Branch the change merges into.
        head_ref: Branch carrying the change.
        head_sha: Head commit the status was computed for.
    """

    ahead_by: int
    behind_by: int
    mergeable: bool | None
    mergeable_state: str = "unknown"
    conflicting_files: tuple[str, ...] | None = None
    base_ref: str | None = None
    head_ref: str | None = None
    head_sha: str | None = None

    @property
    def has_conflicts(self) -> bool:
        """Return True when the host reports the branches as unmergeable."""
        return self.mergeable is False or self.mergeable_state == "dirty"


@dataclass(frozen=True, slots=True)
class ContentDescriptor:
    """A file's content at a ref together with its content-addressed version token."""

    path: str
    version_token: str
    content: str


@dataclass(frozen=True, slots=True)
class ConflictFile:
    """Working unit of a conflict-resolution session.

    "Ours" is the head (pull-request) branch, "theirs" the base branch. An
    ``*_exists`` flag is False when the read for that side failed, in which
    case the matching content is the empty string.
    """

    path: str
    ours_content: str
    theirs_content: str
    ours_exists: bool = True
    theirs_exists: bool = True

    @property
    def differs(self) -> bool:
        """Return True when the two sides have different content."""
        return self.ours_content != self.theirs_content

    def with_markers(self, ours_label: str = "head", theirs_label: str = "base") -> str:
        """Render both sides as a single buffer with classic conflict markers."""
        return (
            f"<<<<<<< {ours_label}\n{_terminated(self.ours_content)}"
            f"=======\n{_terminated(self.theirs_content)}>>>>>>> {theirs_label}\n"
        )


def _terminated(text: str) -> str:
    """Return text ending in a newline unless it is empty."""
    if not text or text.endswith("\n"):
        return text
    return text + "\n"


@dataclass(slots=True)
class ConflictResolutionSession:
    """Ephemeral state of an interactive resolution, fixed at start."""

    files: tuple[ConflictFile, ...]
    current_index: int = 0
    resolved_content: dict[str, str] = field(default_factory=dict)
    visited: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Number of files in the session."""
        return len(self.files)

    @property
    def is_complete(self) -> bool:
        """Return True once every file has a resolution."""
        return len(self.resolved_content) == len(self.files)

    @property
    def current_file(self) -> ConflictFile | None:
        """The file awaiting resolution, or None when complete."""
        if self.is_complete:
            return None
        return self.files[self.current_index]

    def record(self, content: str) -> None:
        """Store the resolution for the active file and advance."""
        active = self.current_file
        if active is None:
            raise IndexError("all files are already resolved")
        self.resolved_content[active.path] = content
        self.visited.append(self.current_index)
        if self.current_index < len(self.files) - 1:
            self.current_index += 1


@dataclass(frozen=True, slots=True)
class CommitOutcome:
    """Result of a fully successful commit phase."""

    committed: tuple[str, ...]
    commit_shas: tuple[str, ...] = ()


@dataclass(slots=True)
class RateLimit:
    """Most recent rate-limit counters reported by the host."""

    limit: int = 5000
    remaining: int = 5000
    reset: int = 0
    used: int = 0

    def is_exhausted(self, now: float) -> bool:
        """Return True when no requests remain before the reset timestamp."""
        return self.remaining <= 0 and now < self.reset
