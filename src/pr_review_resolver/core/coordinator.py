"""Merge-conflict resolution workflow.

This module provides the ConflictResolutionCoordinator, which loads a change's
merge status, identifies the files that conflict between its base and head
branches, walks the user through resolving them one at a time and commits the
results back to the head branch. Every write is guarded by the file's
freshest version token, so a concurrent change to the branch aborts the batch
instead of being overwritten.

State machine::

    IDLE -> LOADING_STATUS -> {CLEAN | BEHIND | HAS_CONFLICTS | UNKNOWN}
    HAS_CONFLICTS -> LOADING_CANDIDATE_FILES -> RESOLVING_FILE -> COMMITTING_RESOLVED -> IDLE
"""

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

from ..analysis.conflict_detector import ConflictDetector
from ..integrations.base import ConflictHost
from .exceptions import (
    ConflictDetectionAmbiguous,
    InvalidStateError,
    TransportError,
)
from .models import (
    CommitOutcome,
    ConflictFile,
    ConflictResolutionSession,
    MergeState,
    MergeStatus,
)

logger = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    """States of the conflict-resolution workflow."""

    IDLE = "idle"
    LOADING_STATUS = "loading_status"
    CLEAN = "clean"
    BEHIND = "behind"
    HAS_CONFLICTS = "has_conflicts"
    UNKNOWN = "unknown"
    LOADING_CANDIDATE_FILES = "loading_candidate_files"
    RESOLVING_FILE = "resolving_file"
    COMMITTING_RESOLVED = "committing_resolved"


_STATE_FOR_MERGE_STATE = {
    MergeState.CLEAN: CoordinatorState.CLEAN,
    MergeState.BEHIND: CoordinatorState.BEHIND,
    MergeState.HAS_CONFLICTS: CoordinatorState.HAS_CONFLICTS,
    MergeState.UNKNOWN: CoordinatorState.UNKNOWN,
}

# States in which a fresh status load may start
_STATUS_LOADABLE = frozenset(
    {
        CoordinatorState.IDLE,
        CoordinatorState.CLEAN,
        CoordinatorState.BEHIND,
        CoordinatorState.HAS_CONFLICTS,
        CoordinatorState.UNKNOWN,
    }
)


def commit_message(path: str) -> str:
    """Return the commit message used for a resolved file."""
    return f"Resolve merge conflict in {path}"


class ConflictResolutionCoordinator:
    """Drives detection, resolution and commit of merge conflicts for one change.

    Args:
        host: Collaborator providing status, diff, content and write access.
        target_id: The change (pull request number) being resolved.
        detector: Candidate-selection and classification helper.
        parallel_fetch: Read the base and head versions of candidate files
            concurrently. Commit-phase writes are always sequential.
        max_workers: Thread pool size when ``parallel_fetch`` is enabled.
        on_updated: Called after the head branch was changed on the host
            (resolved files committed or branch updated).
    """

    def __init__(
        self,
        host: ConflictHost,
        target_id: int,
        *,
        detector: ConflictDetector | None = None,
        parallel_fetch: bool = False,
        max_workers: int = 4,
        on_updated: Callable[[], None] | None = None,
    ) -> None:
        """Create a coordinator in the IDLE state."""
        self.host = host
        self.target_id = target_id
        self.detector = detector or ConflictDetector()
        self.parallel_fetch = parallel_fetch
        self.max_workers = max_workers
        self.on_updated = on_updated
        self._state = CoordinatorState.IDLE
        self._status: MergeStatus | None = None
        self._session: ConflictResolutionSession | None = None

    @property
    def state(self) -> CoordinatorState:
        """Current workflow state."""
        return self._state

    @property
    def status(self) -> MergeStatus | None:
        """The most recently loaded merge status."""
        return self._status

    @property
    def session(self) -> ConflictResolutionSession | None:
        """The active resolution session, if any."""
        return self._session

    @property
    def current_file(self) -> ConflictFile | None:
        """The file awaiting resolution."""
        return self._session.current_file if self._session else None

    @property
    def progress(self) -> tuple[int, int]:
        """Return ``(files resolved, files total)`` for the active session."""
        if self._session is None:
            return (0, 0)
        return (len(self._session.resolved_content), self._session.total)

    def _transition(self, new_state: CoordinatorState) -> None:
        logger.debug(f"PR #{self.target_id}: {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _require(self, *allowed: CoordinatorState, operation: str) -> None:
        if self._state not in allowed:
            raise InvalidStateError(f"Cannot {operation} in state {self._state.value}")

    # ------------------------------------------------------------------ status

    def load_status(self) -> MergeStatus:
        """Fetch and classify the change's merge status.

        Returns:
            MergeStatus: The loaded status. ``state`` becomes CLEAN, BEHIND,
                HAS_CONFLICTS or UNKNOWN.

        Raises:
            InvalidStateError: If a resolution or commit is in progress.
            TransportError: If the status cannot be read; state returns to IDLE.
        """
        self._require(*_STATUS_LOADABLE, operation="load merge status")
        self._transition(CoordinatorState.LOADING_STATUS)
        try:
            status = self.host.get_merge_status(self.target_id)
        except TransportError as e:
            e.step = e.step or "load_status"
            self._transition(CoordinatorState.IDLE)
            raise

        self._status = status
        merge_state = self.detector.classify(status)
        self._transition(_STATE_FOR_MERGE_STATE[merge_state])
        logger.info(
            f"PR #{self.target_id} merge status: {merge_state.value} "
            f"(ahead {status.ahead_by}, behind {status.behind_by})"
        )
        return status

    def update_branch(self) -> MergeStatus:
        """Bring a behind-but-clean head branch up to date with its base.

        Returns:
            MergeStatus: The status reloaded after the update.

        Raises:
            InvalidStateError: Unless the last status was BEHIND.
            TransportError: If the host refuses the update; state stays BEHIND.
        """
        self._require(CoordinatorState.BEHIND, operation="update the branch")
        assert self._status is not None
        try:
            self.host.update_branch(self.target_id, self._status.head_sha)
        except TransportError as e:
            e.step = e.step or "update_branch"
            raise
        logger.info(f"Updated head branch of PR #{self.target_id} from its base")
        status = self.load_status()
        self._notify_updated()
        return status

    # -------------------------------------------------------------- discovery

    def begin_resolution(self) -> ConflictResolutionSession:
        """Identify conflicting files and start a sequential resolution session.

        Candidate paths come from the host's conflicting-file list when it has
        one, otherwise from the modified files of a base...head comparison.
        Both versions of each candidate are read; a failed read marks that
        side as absent rather than aborting. Files whose two versions are
        identical are dropped.

        Returns:
            ConflictResolutionSession: The new session, positioned on its first file.

        Raises:
            InvalidStateError: Unless the last status was HAS_CONFLICTS.
            ConflictDetectionAmbiguous: If no resolvable file was found.
            TransportError: If the branch comparison fails.
        """
        self._require(CoordinatorState.HAS_CONFLICTS, operation="start resolving conflicts")
        status = self._status
        assert status is not None
        if not status.base_ref or not status.head_ref:
            raise InvalidStateError("Merge status does not name the base and head branches")

        self._transition(CoordinatorState.LOADING_CANDIDATE_FILES)
        try:
            paths = self._candidate_paths(status)
            files = self._load_conflict_files(paths, status.base_ref, status.head_ref)
        except Exception:
            self._transition(CoordinatorState.HAS_CONFLICTS)
            raise

        if not files:
            self._transition(CoordinatorState.HAS_CONFLICTS)
            raise ConflictDetectionAmbiguous(
                "Could not load any conflicting file; please resolve the conflict locally",
                recommendation=self.detector.recommend_local_resolution(
                    status.base_ref, status.head_ref
                ),
            )

        self._session = ConflictResolutionSession(files=tuple(files))
        self._transition(CoordinatorState.RESOLVING_FILE)
        logger.info(f"PR #{self.target_id}: {len(files)} file(s) to resolve")
        return self._session

    def _candidate_paths(self, status: MergeStatus) -> list[str]:
        if status.conflicting_files:
            return list(status.conflicting_files)

        assert status.base_ref is not None and status.head_ref is not None
        try:
            entries = self.host.compare(status.base_ref, status.head_ref)
        except TransportError as e:
            e.step = e.step or "compare"
            raise
        paths = self.detector.select_candidates(entries)
        if not paths:
            raise ConflictDetectionAmbiguous(
                "Could not identify conflicting files; the conflict may involve "
                "added or deleted files",
                recommendation=self.detector.recommend_local_resolution(
                    status.base_ref, status.head_ref
                ),
            )
        return paths

    def _read_side(self, path: str, ref: str) -> tuple[str, bool]:
        """Read one side of a candidate; a failed read means the file is absent there."""
        try:
            return self.host.read_file(path, ref).content, True
        except TransportError as e:
            logger.warning(f"Treating {path} as absent on {ref}: {e}")
            return "", False

    def _load_conflict_files(self, paths: list[str], base_ref: str, head_ref: str) -> list[ConflictFile]:
        reads = [(path, ref) for path in paths for ref in (base_ref, head_ref)]
        if self.parallel_fetch and len(reads) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {key: executor.submit(self._read_side, *key) for key in reads}
                results = {key: future.result() for key, future in futures.items()}
        else:
            results = {key: self._read_side(*key) for key in reads}

        files = []
        for path in paths:
            theirs, theirs_exists = results[(path, base_ref)]
            ours, ours_exists = results[(path, head_ref)]
            conflict_file = ConflictFile(
                path=path,
                ours_content=ours,
                theirs_content=theirs,
                ours_exists=ours_exists,
                theirs_exists=theirs_exists,
            )
            if conflict_file.differs:
                files.append(conflict_file)
            else:
                logger.debug(f"{path} is identical on both branches; skipping")
        return files

    # ------------------------------------------------------------- resolution

    def resolve_current(self, content: str) -> CommitOutcome | None:
        """Record the resolved text of the active file and move to the next one.

        When the last file is resolved the commit phase runs immediately.

        Returns:
            CommitOutcome | None: The commit outcome after the last file, else None.

        Raises:
            InvalidStateError: If no file is awaiting resolution.
            StaleShaConflict: If a file changed on the head branch during commit.
            ContentFetchFailure: If a file could not be re-read during commit.
            TransportError: For any other commit-phase failure.
        """
        self._require(CoordinatorState.RESOLVING_FILE, operation="resolve a file")
        session = self._session
        assert session is not None
        session.record(content)
        if not session.is_complete:
            return None
        return self._commit_resolved()

    def cancel(self) -> None:
        """Abandon the resolution session without writing anything.

        Raises:
            InvalidStateError: If the commit phase has already started.
        """
        if self._state is CoordinatorState.COMMITTING_RESOLVED:
            raise InvalidStateError("Cannot cancel while resolved files are being committed")
        if self._session is not None or self._state is CoordinatorState.LOADING_CANDIDATE_FILES:
            logger.info(f"PR #{self.target_id}: conflict resolution cancelled")
            self._session = None
            self._transition(CoordinatorState.HAS_CONFLICTS)

    # ----------------------------------------------------------------- commit

    def _commit_resolved(self) -> CommitOutcome:
        session = self._session
        status = self._status
        assert session is not None and status is not None and status.head_ref is not None
        head_ref = status.head_ref

        self._transition(CoordinatorState.COMMITTING_RESOLVED)
        committed: list[str] = []
        shas: list[str] = []
        try:
            for conflict_file in session.files:
                path = conflict_file.path
                step = "fetch_version"
                try:
                    descriptor = self.host.read_file(path, head_ref)
                    step = "write"
                    sha = self.host.write_file(
                        path,
                        head_ref,
                        session.resolved_content[path],
                        descriptor.version_token,
                        commit_message(path),
                    )
                except TransportError as e:
                    e.path = e.path or path
                    e.step = step
                    e.committed_count = len(committed)
                    logger.error(
                        f"Commit of {path} failed at {step} after {len(committed)} "
                        f"of {session.total} file(s): {e}"
                    )
                    raise
                committed.append(path)
                shas.append(sha)
                logger.info(f"Committed resolution of {path} to {head_ref}")
        finally:
            self._session = None
            self._transition(CoordinatorState.IDLE)

        outcome = CommitOutcome(committed=tuple(committed), commit_shas=tuple(shas))
        try:
            self.load_status()
        except TransportError as e:
            logger.warning(f"Resolved files committed but merge status reload failed: {e}")
        self._notify_updated()
        return outcome

    def _notify_updated(self) -> None:
        if self.on_updated is not None:
            self.on_updated()
