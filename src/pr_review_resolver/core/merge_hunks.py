"""Hunk-by-hunk resolution of a conflicting file.

The head ("ours") and base ("theirs") versions of a file are split into
alternating unchanged and differing regions. The user picks a side for each
differing region and the resolved text is assembled from those choices.
Regions without a choice keep the head version.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from difflib import SequenceMatcher
from enum import Enum

from .models import ConflictFile


class HunkKind(str, Enum):
    """How a region differs between the head and base versions."""

    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    REMOVED = "removed"  # only in ours
    ADDED = "added"  # only in theirs


class Choice(str, Enum):
    """Side whose text a differing hunk keeps."""

    OURS = "ours"
    THEIRS = "theirs"


_OPCODE_KINDS = {
    "equal": HunkKind.UNCHANGED,
    "replace": HunkKind.MODIFIED,
    "delete": HunkKind.REMOVED,
    "insert": HunkKind.ADDED,
}


@dataclass(frozen=True, slots=True)
class MergeHunk:
    """A region of a conflicting file.

    Attributes:
        id: Position of the hunk within the file, starting at 0.
        kind: How the two sides differ in this region.
        ours_lines: Lines of the head version in this region.
        theirs_lines: Lines of the base version in this region.
        ours_start: 1-based line number of the region in the head version.
        theirs_start: 1-based line number of the region in the base version.
    """

    id: int
    kind: HunkKind
    ours_lines: tuple[str, ...]
    theirs_lines: tuple[str, ...]
    ours_start: int
    theirs_start: int

    @property
    def is_conflict(self) -> bool:
        """Return True when the region needs a choice."""
        return self.kind is not HunkKind.UNCHANGED

    def lines_for(self, choice: Choice) -> tuple[str, ...]:
        """Return the lines this region contributes under ``choice``."""
        if self.kind is HunkKind.UNCHANGED or choice is Choice.OURS:
            return self.ours_lines
        return self.theirs_lines


def _split_lines(text: str) -> list[str]:
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def split_hunks(conflict_file: ConflictFile) -> list[MergeHunk]:
    """Split a conflicting file into unchanged and differing regions, in file order."""
    ours = _split_lines(conflict_file.ours_content)
    theirs = _split_lines(conflict_file.theirs_content)
    matcher = SequenceMatcher(None, ours, theirs, autojunk=False)
    return [
        MergeHunk(
            id=hunk_id,
            kind=_OPCODE_KINDS[tag],
            ours_lines=tuple(ours[i1:i2]),
            theirs_lines=tuple(theirs[j1:j2]),
            ours_start=i1 + 1,
            theirs_start=j1 + 1,
        )
        for hunk_id, (tag, i1, i2, j1, j2) in enumerate(matcher.get_opcodes())
    ]


def apply_resolutions(
    conflict_file: ConflictFile,
    hunks: list[MergeHunk],
    choices: Mapping[int, Choice],
) -> str:
    """Assemble the resolved text of a file from per-hunk choices.

    Args:
        conflict_file: The file the hunks were split from.
        hunks: Result of ``split_hunks(conflict_file)``.
        choices: Chosen side per hunk id. Missing hunks keep ours.

    Returns:
        str: The resolved text. It ends with a newline unless the head
            version does not.
    """
    lines = [
        line
        for hunk in hunks
        for line in hunk.lines_for(Choice(choices.get(hunk.id, Choice.OURS)))
    ]
    if not lines:
        return ""
    text = "\n".join(lines)
    if conflict_file.ours_content.endswith("\n"):
        text += "\n"
    return text


def accept_all(conflict_file: ConflictFile, choice: Choice) -> str:
    """Return one side's version unchanged."""
    if Choice(choice) is Choice.OURS:
        return conflict_file.ours_content
    return conflict_file.theirs_content
