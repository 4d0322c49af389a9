"""PR Review Resolver.

A pull-request review and merge-conflict resolution engine for GitHub.
"""

__version__ = "0.1.0"

from .analysis.conflict_detector import ConflictDetector
from .config.presets import PresetConfig
from .config.runtime_config import RuntimeConfig
from .core.coordinator import ConflictResolutionCoordinator, CoordinatorState
from .core.exceptions import (
    ConflictDetectionAmbiguous,
    ContentFetchFailure,
    InvalidStateError,
    ReviewEngineError,
    StaleShaConflict,
    TransportError,
    ValidationError,
)
from .core.models import (
    ConflictFile,
    DiffHunk,
    DiffLine,
    FileDiffEntry,
    MergeStatus,
    ParsedFileDiff,
    PendingComment,
    ReviewComment,
    ReviewEvent,
    Side,
)
from .diff.comment_index import LineCommentIndex
from .diff.patch_parser import parse_file_entries, parse_patch
from .integrations.github import GitHubClient
from .review.pending_review import PendingReviewAccumulator, PendingReviewRegistry

__all__ = [
    "ConflictDetectionAmbiguous",
    "ConflictDetector",
    "ConflictFile",
    "ConflictResolutionCoordinator",
    "ContentFetchFailure",
    "CoordinatorState",
    "DiffHunk",
    "DiffLine",
    "FileDiffEntry",
    "GitHubClient",
    "InvalidStateError",
    "LineCommentIndex",
    "MergeStatus",
    "ParsedFileDiff",
    "PendingComment",
    "PendingReviewAccumulator",
    "PendingReviewRegistry",
    "PresetConfig",
    "ReviewComment",
    "ReviewEngineError",
    "ReviewEvent",
    "RuntimeConfig",
    "Side",
    "StaleShaConflict",
    "TransportError",
    "ValidationError",
    "parse_file_entries",
    "parse_patch",
]
