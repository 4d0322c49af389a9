"""Collaborator interfaces consumed by the engine.

The review and conflict workflows only depend on these protocols. The GitHub
client in ``integrations.github`` implements all of them for one repository;
tests use in-memory fakes.
"""

from collections.abc import Sequence
from typing import Any, Protocol

from ..core.models import (
    ContentDescriptor,
    FileDiffEntry,
    MergeStatus,
    PendingComment,
    ReviewEvent,
)


class MergeStatusReader(Protocol):
    """Reads the mergeability of a change."""

    def get_merge_status(self, target_id: int) -> MergeStatus:
        """Return ahead/behind counts and mergeability for the change.

        Raises:
            TransportError: If the host cannot be reached or rejects the request.
        """
        ...


class FileDiffReader(Protocol):
    """Reads the file-level diff between two refs."""

    def compare(self, base_ref: str, head_ref: str) -> list[FileDiffEntry]:
        """Return the files changed between ``base_ref`` and ``head_ref``."""
        ...


class FileContentReader(Protocol):
    """Reads a file at a ref."""

    def read_file(self, path: str, ref: str) -> ContentDescriptor:
        """Return the file's text and version token.

        Raises:
            ContentFetchFailure: If the file does not exist at ``ref`` or is not a file.
        """
        ...


class FileContentWriter(Protocol):
    """Writes a file under a compare-and-swap precondition."""

    def write_file(
        self,
        path: str,
        branch: str,
        content: str,
        expected_token: str,
        message: str,
    ) -> str:
        """Commit ``content`` to ``branch`` and return the new commit id.

        Raises:
            StaleShaConflict: If the file's current token is not ``expected_token``.
        """
        ...


class ReviewSubmitter(Protocol):
    """Creates a review record atomically."""

    def submit_review(
        self,
        target_id: int,
        event: ReviewEvent,
        body: str | None,
        comments: Sequence[PendingComment],
    ) -> dict[str, Any]:
        """Create one review with a verdict, summary body and inline comments."""
        ...


class BranchUpdater(Protocol):
    """Brings a change's head branch up to date with its base."""

    def update_branch(self, target_id: int, expected_head_sha: str | None = None) -> dict[str, Any]:
        """Merge the base branch into the head branch on the host."""
        ...


class ConflictHost(
    MergeStatusReader, FileDiffReader, FileContentReader, FileContentWriter, BranchUpdater, Protocol
):
    """Everything the conflict-resolution coordinator needs from the host."""
