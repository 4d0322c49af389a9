"""Per-line lookup of review comments on a file diff.

Existing (persisted) and pending (drafted) comments for one file are bucketed
by their ``(line, side)`` anchor so that a renderer walking the diff rows can
attach every thread to the row it belongs to.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence

from ..core.models import DiffLine, LineAnchor, PendingComment, ReviewComment, Side


def comment_key(line: int, side: Side) -> str:
    """Render an anchor in the ``"<line>-<side>"`` display form."""
    return f"{line}-{side.value}"


def index_comments(
    existing: Iterable[ReviewComment],
    pending: Iterable[PendingComment],
    path: str,
) -> tuple[dict[LineAnchor, list[ReviewComment]], dict[LineAnchor, list[PendingComment]]]:
    """Bucket existing and pending comments for ``path`` by anchor.

    Comments on other paths are ignored, as are existing comments that have
    no resolvable line. Bucket order follows input order.

    Returns:
        tuple: ``(existing_by_anchor, pending_by_anchor)``.
    """
    return _bucket_existing(existing, path)[0], _bucket_pending(pending, path)


def _bucket_existing(
    comments: Iterable[ReviewComment], path: str
) -> tuple[dict[LineAnchor, list[ReviewComment]], list[ReviewComment]]:
    buckets: dict[LineAnchor, list[ReviewComment]] = defaultdict(list)
    unanchored: list[ReviewComment] = []
    for comment in comments:
        if comment.path != path:
            continue
        if comment.line is None:
            unanchored.append(comment)
            continue
        buckets[(comment.line, comment.side)].append(comment)
    return dict(buckets), unanchored


def _bucket_pending(
    comments: Iterable[PendingComment], path: str
) -> dict[LineAnchor, list[PendingComment]]:
    buckets: dict[LineAnchor, list[PendingComment]] = defaultdict(list)
    for comment in comments:
        if comment.path == path:
            buckets[(comment.line, comment.side)].append(comment)
    return dict(buckets)


class LineCommentIndex:
    """Lookup structure over the comments of a single file.

    Example:
        >>> index = LineCommentIndex(existing_comments, pending_comments, "src/app.py")
        >>> for row in parsed_diff.rows():
        ...     existing, drafts = index.threads_for(row)
    """

    def __init__(
        self,
        existing: Iterable[ReviewComment],
        pending: Iterable[PendingComment],
        path: str,
    ) -> None:
        """Build the index for ``path``.

        Args:
            existing: Persisted comments, in the order the host returned them.
            pending: Drafted comments, in creation order.
            path: File the index is restricted to.
        """
        self.path = path
        self.existing_by_anchor, self.unanchored = _bucket_existing(existing, path)
        self.pending_by_anchor = _bucket_pending(pending, path)

    def existing_at(self, line: int, side: Side) -> list[ReviewComment]:
        """Return persisted comments anchored at ``(line, side)``."""
        return list(self.existing_by_anchor.get((line, side), ()))

    def pending_at(self, line: int, side: Side) -> list[PendingComment]:
        """Return drafted comments anchored at ``(line, side)``."""
        return list(self.pending_by_anchor.get((line, side), ()))

    def threads_for(
        self, diff_line: DiffLine
    ) -> tuple[Sequence[ReviewComment], Sequence[PendingComment]]:
        """Return the comments attached to a rendered diff row.

        Context rows collect comments addressed to either side. Hunk-header
        rows never carry comments.
        """
        existing: list[ReviewComment] = []
        pending: list[PendingComment] = []
        for anchor in diff_line.anchors():
            existing.extend(self.existing_at(*anchor))
            pending.extend(self.pending_at(*anchor))
        return existing, pending

    def unplaced(self, rows: Iterable[DiffLine]) -> list[ReviewComment]:
        """Return existing comments whose anchor matches none of ``rows``.

        These are typically outdated threads whose line left the diff; they
        are returned after the unanchored ones, in bucket order.
        """
        shown = {anchor for row in rows for anchor in row.anchors()}
        orphaned = [
            comment
            for anchor, bucket in self.existing_by_anchor.items()
            if anchor not in shown
            for comment in bucket
        ]
        return self.unanchored + orphaned

    def anchors(self) -> set[LineAnchor]:
        """Return every anchor that has at least one comment."""
        return set(self.existing_by_anchor) | set(self.pending_by_anchor)

    def __len__(self) -> int:
        """Count anchored comments of both kinds."""
        return sum(len(v) for v in self.existing_by_anchor.values()) + sum(
            len(v) for v in self.pending_by_anchor.values()
        )
