"""Pending-review accumulation.

Inline comments drafted while reading a diff are staged locally and sent to
the host together with a verdict as a single review. The accumulator is an
explicit state machine:

    NO_ACTIVE_REVIEW -> ACCUMULATING_DRAFT -> SUBMITTING_REVIEW -> NO_ACTIVE_REVIEW
                                 \\-> (discard) -> NO_ACTIVE_REVIEW
"""

import logging
import uuid
from collections.abc import Callable
from enum import Enum
from typing import Any

from ..core.exceptions import InvalidStateError, ValidationError
from ..core.models import PendingComment, PendingReview, ReviewEvent, Side
from ..integrations.base import ReviewSubmitter

logger = logging.getLogger(__name__)


class ReviewDraftState(str, Enum):
    """States of a pending-review accumulator."""

    NO_ACTIVE_REVIEW = "no_active_review"
    ACCUMULATING_DRAFT = "accumulating_draft"
    SUBMITTING_REVIEW = "submitting_review"


def _new_local_id() -> str:
    return uuid.uuid4().hex


class PendingReviewAccumulator:
    """Staging area for one review target's drafted comments.

    Args:
        submitter: Collaborator that creates the review on the host.
        target_id: Review target (pull request number) this accumulator is
            bound to. If omitted, the first ``start_pending_review`` binds it.
        retain_draft_on_failure: Keep the draft when the host rejects the
            submission instead of clearing it.
        id_factory: Generator for local comment ids.
    """

    def __init__(
        self,
        submitter: ReviewSubmitter,
        target_id: int | None = None,
        *,
        retain_draft_on_failure: bool = False,
        id_factory: Callable[[], str] = _new_local_id,
    ) -> None:
        """Create an accumulator with no active draft."""
        self._submitter = submitter
        self._target_id = target_id
        self._retain_draft_on_failure = retain_draft_on_failure
        self._id_factory = id_factory
        self._draft: PendingReview | None = None
        self._submitting = False

    @property
    def state(self) -> ReviewDraftState:
        """Current state of the draft."""
        if self._submitting:
            return ReviewDraftState.SUBMITTING_REVIEW
        if self._draft is not None:
            return ReviewDraftState.ACCUMULATING_DRAFT
        return ReviewDraftState.NO_ACTIVE_REVIEW

    @property
    def target_id(self) -> int | None:
        """Review target the accumulator is bound to, if any."""
        return self._target_id

    @property
    def has_pending_review(self) -> bool:
        """Return True while a draft exists."""
        return self._draft is not None

    @property
    def comments(self) -> tuple[PendingComment, ...]:
        """Drafted comments in creation order."""
        if self._draft is None:
            return ()
        return tuple(self._draft.comments)

    def comments_for(self, path: str) -> list[PendingComment]:
        """Return drafted comments on ``path`` in creation order."""
        return [c for c in self.comments if c.path == path]

    def _ensure_not_submitting(self, operation: str) -> None:
        if self._submitting:
            raise InvalidStateError(f"Cannot {operation} while the review is being submitted")

    def start_pending_review(self, target_id: int) -> PendingReview:
        """Start a draft for ``target_id``; a no-op if one already exists.

        Raises:
            ValidationError: If the accumulator is bound to a different target.
        """
        self._ensure_not_submitting("start a review")
        if self._target_id is not None and self._target_id != target_id:
            raise ValidationError(
                f"Pending review is bound to #{self._target_id}, not #{target_id}"
            )
        self._target_id = target_id
        if self._draft is None:
            self._draft = PendingReview(target_id=target_id)
            logger.debug(f"Started pending review for #{target_id}")
        return self._draft

    def add_comment(
        self,
        path: str,
        line: int,
        side: Side | str,
        body: str,
        target_id: int | None = None,
    ) -> PendingComment:
        """Draft an inline comment, starting the review if needed.

        Args:
            path: File the comment is on.
            line: 1-based line number on ``side``.
            side: LEFT for the base version, RIGHT for the head version.
            body: Comment text; surrounding whitespace is stripped.
            target_id: Review target to start against when no draft exists.
                Defaults to the accumulator's bound target.

        Returns:
            PendingComment: The drafted comment with a fresh local id.

        Raises:
            ValidationError: If the body is blank, the path is empty, the line
                is not positive, the side is unknown, or no target is known.
        """
        self._ensure_not_submitting("add a comment")
        text = (body or "").strip()
        if not text:
            raise ValidationError("Comment body must not be empty")
        if not path:
            raise ValidationError("Comment path must not be empty")
        if line < 1:
            raise ValidationError(f"Comment line must be >= 1, got {line}")
        try:
            resolved_side = Side(side)
        except ValueError as e:
            raise ValidationError(f"Invalid side {side!r}; expected LEFT or RIGHT") from e

        if self._draft is None:
            target = target_id if target_id is not None else self._target_id
            if target is None:
                raise ValidationError("No review target to start a pending review against")
            self.start_pending_review(target)
        assert self._draft is not None

        comment = PendingComment(
            local_id=self._id_factory(),
            path=path,
            line=line,
            side=resolved_side,
            body=text,
        )
        self._draft.comments.append(comment)
        return comment

    def remove_comment(self, local_id: str) -> bool:
        """Remove a drafted comment; returns False if no comment had that id."""
        self._ensure_not_submitting("remove a comment")
        if self._draft is None:
            return False
        for i, comment in enumerate(self._draft.comments):
            if comment.local_id == local_id:
                del self._draft.comments[i]
                return True
        return False

    def discard(self) -> None:
        """Drop the draft and all its comments without contacting the host."""
        self._ensure_not_submitting("discard the review")
        if self._draft is not None:
            logger.debug(
                f"Discarded pending review for #{self._draft.target_id} "
                f"({len(self._draft.comments)} comment(s))"
            )
        self._draft = None

    def validate_submission(self, event: ReviewEvent | str, body: str | None = None) -> ReviewEvent:
        """Check submission preconditions without changing state.

        Returns:
            ReviewEvent: The parsed verdict.

        Raises:
            ValidationError: If the verdict is unknown, or a COMMENT or
                REQUEST_CHANGES review has neither a body nor any comments.
        """
        try:
            verdict = ReviewEvent(event)
        except ValueError as e:
            raise ValidationError(f"Invalid review event {event!r}") from e

        if verdict is not ReviewEvent.APPROVE and not (body or "").strip() and not self.comments:
            raise ValidationError(
                f"A {verdict.value} review needs a summary or at least one inline comment"
            )
        return verdict

    def submit(self, event: ReviewEvent | str, body: str | None = None) -> dict[str, Any]:
        """Submit the verdict, summary and all drafted comments as one review.

        The draft is cleared after the host call, whether or not it succeeds,
        unless the accumulator was created with ``retain_draft_on_failure``.

        Returns:
            dict[str, Any]: The review record returned by the host.

        Raises:
            ValidationError: If preconditions fail; the draft is kept.
            InvalidStateError: If a submission is already in progress.
            TransportError: If the host rejects the review.
        """
        self._ensure_not_submitting("submit the review")
        verdict = self.validate_submission(event, body)
        target = self._draft.target_id if self._draft is not None else self._target_id
        if target is None:
            raise ValidationError("No review target to submit against")

        summary = (body or "").strip() or None
        comments = self.comments
        self._submitting = True
        try:
            review = self._submitter.submit_review(target, verdict, summary, comments)
        except Exception:
            if not self._retain_draft_on_failure:
                self._draft = None
            logger.warning(
                f"Review submission for #{target} failed "
                f"({'draft kept' if self._retain_draft_on_failure else 'draft discarded'})"
            )
            raise
        finally:
            self._submitting = False

        self._draft = None
        logger.info(f"Submitted {verdict.value} review for #{target} with {len(comments)} comment(s)")
        return review


class PendingReviewRegistry:
    """One accumulator per review target, shared by a UI session."""

    def __init__(self, submitter: ReviewSubmitter, *, retain_draft_on_failure: bool = False) -> None:
        """Create an empty registry."""
        self._submitter = submitter
        self._retain_draft_on_failure = retain_draft_on_failure
        self._accumulators: dict[int, PendingReviewAccumulator] = {}

    def for_target(self, target_id: int) -> PendingReviewAccumulator:
        """Return the accumulator for ``target_id``, creating it on first use."""
        accumulator = self._accumulators.get(target_id)
        if accumulator is None:
            accumulator = PendingReviewAccumulator(
                self._submitter,
                target_id,
                retain_draft_on_failure=self._retain_draft_on_failure,
            )
            self._accumulators[target_id] = accumulator
        return accumulator

    def active_targets(self) -> list[int]:
        """Return targets that currently have a draft."""
        return [t for t, acc in self._accumulators.items() if acc.has_pending_review]
