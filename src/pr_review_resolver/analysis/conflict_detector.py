"""Conflict detection and merge-status analysis.

This module provides the ConflictDetector class that classifies a change's
merge status and narrows a branch comparison down to the files that can be
resolved with a three-way text merge.
"""

import logging
from collections.abc import Iterable

from ..core.models import FileDiffEntry, FileStatus, MergeState, MergeStatus

logger = logging.getLogger(__name__)

# Host states in which the branches merge cleanly even if other checks are pending
_MERGEABLE_STATES = frozenset({"clean", "unstable", "blocked", "has_hooks"})

# Only files present on both sides can be merged as text
_CANDIDATE_STATUSES = frozenset({FileStatus.MODIFIED, FileStatus.CHANGED})


class ConflictDetector:
    """Detects which files conflict between two branches."""

    def classify(self, status: MergeStatus) -> MergeState:
        """Map a host merge status to the remediation it calls for.

        Conflicts take precedence over being behind: a branch that is both
        behind and unmergeable still needs resolution.
        """
        if status.has_conflicts:
            return MergeState.HAS_CONFLICTS
        if status.behind_by > 0 or status.mergeable_state == "behind":
            return MergeState.BEHIND
        if status.mergeable is True or status.mergeable_state in _MERGEABLE_STATES:
            return MergeState.CLEAN
        return MergeState.UNKNOWN

    def select_candidates(self, entries: Iterable[FileDiffEntry]) -> list[str]:
        """Return paths of files modified on both sides, in comparison order.

        Added and removed files exist on only one side and are excluded.
        Renamed files are excluded as well since their paths differ between
        the two refs.
        """
        candidates = []
        skipped = 0
        for entry in entries:
            if entry.status in _CANDIDATE_STATUSES:
                candidates.append(entry.path)
            else:
                skipped += 1
        if skipped:
            logger.debug(f"Skipped {skipped} non-modified file(s) during candidate selection")
        return candidates

    def recommend_local_resolution(self, base_ref: str | None, head_ref: str | None) -> str:
        """Return the command sequence to resolve the conflict in a local clone."""
        head = head_ref or "<head-branch>"
        base = base_ref or "<base-branch>"
        return f"git checkout {head}\ngit merge {base}"
