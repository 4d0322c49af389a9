"""Test configuration and fixtures."""

import io
import logging
from collections.abc import Generator, Sequence
from typing import Any

import pytest

from pr_review_resolver.core.exceptions import ContentFetchFailure, StaleShaConflict
from pr_review_resolver.core.models import (
    ContentDescriptor,
    FileDiffEntry,
    FileStatus,
    MergeStatus,
    PendingComment,
    ReviewEvent,
)


class FakeHost:
    """In-memory repository implementing every collaborator protocol.

    File contents are keyed by ``(ref, path)``. Each write bumps the file's
    version token so that compare-and-swap checks behave like the real host.
    Every call is appended to ``calls`` in order.
    """

    def __init__(self, status: MergeStatus | None = None) -> None:
        self.status = status or MergeStatus(
            ahead_by=1,
            behind_by=1,
            mergeable=False,
            mergeable_state="dirty",
            base_ref="main",
            head_ref="feature",
            head_sha="head-sha",
        )
        self.contents: dict[tuple[str, str], str] = {}
        self.tokens: dict[tuple[str, str], str] = {}
        self.compare_entries: list[FileDiffEntry] = []
        self.write_errors: dict[str, Exception] = {}
        self.status_error: Exception | None = None
        self.submit_error: Exception | None = None
        self.update_error: Exception | None = None
        self.reviews: list[dict[str, Any]] = []
        self.writes: list[dict[str, Any]] = []
        self.calls: list[tuple[Any, ...]] = []
        self._counter = 0

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def put(self, ref: str, path: str, content: str) -> None:
        """Seed a file on a branch."""
        self.contents[(ref, path)] = content
        self.tokens[(ref, path)] = self._next("blob")

    def get_merge_status(self, target_id: int) -> MergeStatus:
        self.calls.append(("get_merge_status", target_id))
        if self.status_error is not None:
            raise self.status_error
        return self.status

    def compare(self, base_ref: str, head_ref: str) -> list[FileDiffEntry]:
        self.calls.append(("compare", base_ref, head_ref))
        return list(self.compare_entries)

    def read_file(self, path: str, ref: str) -> ContentDescriptor:
        self.calls.append(("read_file", path, ref))
        key = (ref, path)
        if key not in self.contents:
            raise ContentFetchFailure(f"{path} not found at {ref}", path=path, ref=ref, status_code=404)
        return ContentDescriptor(path=path, version_token=self.tokens[key], content=self.contents[key])

    def write_file(
        self, path: str, branch: str, content: str, expected_token: str, message: str
    ) -> str:
        self.calls.append(("write_file", path, branch))
        self.writes.append(
            {
                "path": path,
                "branch": branch,
                "content": content,
                "expected_token": expected_token,
                "message": message,
            }
        )
        if path in self.write_errors:
            raise self.write_errors[path]
        if self.tokens.get((branch, path)) != expected_token:
            raise StaleShaConflict(
                f"{path} changed", path=path, expected_token=expected_token, status_code=409
            )
        self.put(branch, path, content)
        return self._next("commit")

    def submit_review(
        self,
        target_id: int,
        event: ReviewEvent,
        body: str | None,
        comments: Sequence[PendingComment],
    ) -> dict[str, Any]:
        self.calls.append(("submit_review", target_id))
        if self.submit_error is not None:
            raise self.submit_error
        review = {
            "id": len(self.reviews) + 1,
            "target_id": target_id,
            "event": event.value,
            "body": body,
            "comments": [c.to_api() for c in comments],
        }
        self.reviews.append(review)
        return review

    def update_branch(self, target_id: int, expected_head_sha: str | None = None) -> dict[str, Any]:
        self.calls.append(("update_branch", target_id, expected_head_sha))
        if self.update_error is not None:
            raise self.update_error
        return {"message": "Updating pull request branch."}


@pytest.fixture
def fake_host() -> FakeHost:
    """Provide an in-memory host whose PR #7 has conflicts between main and feature."""
    return FakeHost()


@pytest.fixture
def conflicting_host(fake_host: FakeHost) -> FakeHost:
    """
    Provide a host with three modified files that differ between branches.

    Returns:
        FakeHost: Host whose comparison lists fileA.txt, fileB.txt and fileC.txt
            as modified, plus one added and one removed file that must be ignored.
    """
    for name in ("fileA.txt", "fileB.txt", "fileC.txt"):
        fake_host.put("main", name, f"base {name}\n")
        fake_host.put("feature", name, f"head {name}\n")
        fake_host.compare_entries.append(FileDiffEntry(path=name, status=FileStatus.MODIFIED))
    fake_host.put("feature", "new.txt", "new\n")
    fake_host.compare_entries.append(FileDiffEntry(path="new.txt", status=FileStatus.ADDED))
    fake_host.put("main", "old.txt", "old\n")
    fake_host.compare_entries.append(FileDiffEntry(path="old.txt", status=FileStatus.REMOVED))
    return fake_host


@pytest.fixture
def sample_review_comments() -> list[dict[str, Any]]:
    """
    Provide review-comment payloads as returned by the GitHub API.

    Returns:
        list[dict[str, Any]]: One line-anchored comment on each side of ``src/app.py``,
            one legacy position-only comment, and one comment on another file.
    """
    return [
        {
            "id": 1,
            "path": "src/app.py",
            "line": 2,
            "side": "RIGHT",
            "body": "Rename this",
            "user": {"login": "alice"},
            "html_url": "https://github.com/owner/repo/pull/7#discussion_r1",
        },
        {
            "id": 2,
            "path": "src/app.py",
            "line": 2,
            "side": "LEFT",
            "body": "Why was this removed?",
            "user": {"login": "bob"},
        },
        {
            "id": 3,
            "path": "src/app.py",
            "position": 4,
            "original_position": 4,
            "body": "Legacy comment",
            "user": {"login": "carol"},
        },
        {
            "id": 4,
            "path": "README.md",
            "line": 1,
            "side": "RIGHT",
            "body": "Typo",
            "user": {"login": "dave"},
        },
    ]


@pytest.fixture
def github_logger_capture() -> Generator[io.StringIO, None, None]:
    """Capture log messages from the GitHub integration module.

    Creates a StringIO buffer, attaches a StreamHandler to the GitHub logger,
    yields the buffer for reading logs, and cleans up the handler after use.

    Yields:
        io.StringIO: Buffer containing log messages.
    """
    log_capture = io.StringIO()
    handler = logging.StreamHandler(log_capture)
    handler.setLevel(logging.DEBUG)

    github_logger = logging.getLogger("pr_review_resolver.integrations.github")
    previous_level = github_logger.level
    github_logger.addHandler(handler)
    github_logger.setLevel(logging.DEBUG)

    try:
        yield log_capture
    finally:
        github_logger.removeHandler(handler)
        github_logger.setLevel(previous_level)
