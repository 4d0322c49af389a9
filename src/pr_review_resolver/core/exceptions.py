"""Exception hierarchy for the review and conflict-resolution engine.

Parse problems never raise: the patch parser degrades to partial hunks and
flags the result instead. Everything else surfaces to the caller through the
classes below, carrying enough context (file, step, progress) for the caller
to decide whether to re-run the whole workflow.
"""


class ReviewEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(ReviewEngineError):
    """Raised when user-supplied input fails a precondition.

    Examples are an empty comment body, or a COMMENT review with neither a
    summary nor any drafted inline comments. State is never mutated when this
    is raised.
    """


class InvalidStateError(ReviewEngineError):
    """Raised when an operation is not allowed in the current workflow state."""


class ConflictDetectionAmbiguous(ReviewEngineError):
    """Raised when no three-way-mergeable candidate files could be identified.

    Attributes:
        recommendation: Human-readable instructions for resolving out of band.
    """

    def __init__(self, message: str, recommendation: str | None = None) -> None:
        """Initialize with a message and an optional out-of-band recommendation."""
        super().__init__(message)
        self.recommendation = recommendation


class TransportError(ReviewEngineError):
    """Generic network or API failure.

    Attributes:
        status_code: HTTP status returned by the host, if any.
        path: File path involved, if the failure is tied to one file.
        step: Workflow step that failed (e.g. "load_status", "commit").
        committed_count: Files written before a commit-phase failure.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        path: str | None = None,
        step: str | None = None,
        committed_count: int | None = None,
    ) -> None:
        """Initialize the error with optional context fields."""
        super().__init__(message)
        self.status_code = status_code
        self.path = path
        self.step = step
        self.committed_count = committed_count


class ContentFetchFailure(TransportError):
    """Raised when a file's content cannot be read at a given ref.

    During candidate discovery this is absorbed and the file is treated as
    absent on that side. During the commit phase it is fatal to the batch.
    """

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        ref: str | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialize with the path and ref that could not be read."""
        super().__init__(message, status_code=status_code, path=path)
        self.ref = ref


class StaleShaConflict(TransportError):
    """Raised when a compare-and-swap write is rejected because the file changed."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        expected_token: str | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialize with the path and the version token that was rejected."""
        super().__init__(message, status_code=status_code, path=path)
        self.expected_token = expected_token
