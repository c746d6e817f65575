"""Reconciliation of the working copy with the tracked remote branch."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from ..errors import (
    AutopullError, LocalInspectionError, RecoveryError, RecoveryFailure,
    RemoteQueryError, StageTimeoutError, redact
)
from .inspector import LocalCommitInspector
from .operations import CommandResult, RepositoryOperations
from .performance_logger import PerformanceLogger
from .remote import RemoteCommitResolver, RemoteDescriptor


class HistoryRewritePolicy(Enum):
    """What to do when the local head is not an ancestor of the remote head."""
    RESET = "reset"
    FAIL = "fail"
    PULL = "pull"


@dataclass(frozen=True)
class UpToDate:
    """Local and remote heads were already equal."""
    commit_id: str


@dataclass(frozen=True)
class Synchronized:
    """Recovery completed; the working copy moved from old_id to new_id."""
    old_id: str
    new_id: str

    @property
    def changed(self) -> bool:
        return self.old_id != self.new_id


@dataclass(frozen=True)
class Failed:
    """The cycle stopped on an error; the next cycle starts over."""
    error: AutopullError


Outcome = Union[UpToDate, Synchronized, Failed]


@dataclass(frozen=True)
class BranchState:
    """Whether the tracked branch exists locally, as observed right now."""
    branch: str
    exists: bool


class ReconciliationEngine:
    """
    Compares the local and remote heads and, when they differ, walks the
    working copy through fetch, branch resolution, and pull.

    Every stage is safe to re-run from scratch, so a cycle that stops
    halfway leaves nothing that the next cycle cannot repair.
    """

    def __init__(
        self,
        remote: RemoteDescriptor,
        resolver: RemoteCommitResolver,
        inspector: LocalCommitInspector,
        operations: RepositoryOperations,
        history_policy: HistoryRewritePolicy = HistoryRewritePolicy.RESET,
        perf_logger: Optional[PerformanceLogger] = None,
        on_divergence: Optional[Callable[[str, str], None]] = None
    ):
        self.remote = remote
        self.resolver = resolver
        self.inspector = inspector
        self.operations = operations
        self.history_policy = history_policy
        self.perf_logger = perf_logger or PerformanceLogger()
        self.on_divergence = on_divergence
        self.logger = logging.getLogger('autopull.engine')

    def reconcile(self) -> Outcome:
        """
        Run one reconciliation cycle.

        Returns:
            UpToDate, Synchronized or Failed. Expected failures are returned,
            never raised.
        """
        try:
            remote_id = self.resolver.resolve_head()
            local_id = self.inspector.read_head()
        except (RemoteQueryError, LocalInspectionError) as e:
            self.logger.warning(f"Divergence check failed: {e}", extra={'operation': 'reconcile'})
            return Failed(e)

        if remote_id == local_id:
            self.logger.debug(f"Up to date at {local_id}", extra={'operation': 'reconcile'})
            return UpToDate(local_id)

        self.logger.info(
            f"New changes detected ({local_id} -> {remote_id}). Pulling updates...",
            extra={'operation': 'reconcile'}
        )
        if self.on_divergence is not None:
            self.on_divergence(local_id, remote_id)

        try:
            self._recover()
            new_id = self.inspector.read_head()
        except (RecoveryError, LocalInspectionError) as e:
            return Failed(e)

        if new_id != remote_id:
            self.logger.warning(
                f"Working copy at {new_id} after pull, remote reported {remote_id}; "
                f"the branch may have moved during the cycle",
                extra={'operation': 'reconcile'}
            )
        self.logger.info(f"Changes pulled successfully ({local_id} -> {new_id}).", extra={'operation': 'reconcile'})
        return Synchronized(local_id, new_id)

    def _recover(self) -> None:
        url = self.remote.authenticated_url
        branch = self.remote.branch
        upstream = self.remote.tracking_ref

        self._run_stage(RecoveryFailure.FETCH_FAILED, "fetch", lambda: self.operations.fetch(url))

        branch_state = self._resolve_branch(branch)
        if branch_state.exists:
            self._run_stage(
                RecoveryFailure.CHECKOUT_FAILED,
                "checkout",
                lambda: self.operations.checkout(branch)
            )
        else:
            self.logger.info(f"Branch '{branch}' not found locally, creating it from {upstream}")
            self._run_stage(
                RecoveryFailure.BRANCH_CREATE_FAILED,
                "branch_create",
                lambda: self.operations.checkout_new_tracking(branch, upstream)
            )

        self._handle_history_rewrite(upstream)

        self._run_stage(RecoveryFailure.PULL_FAILED, "pull", lambda: self.operations.pull(url, branch))

    def _resolve_branch(self, branch: str) -> BranchState:
        with self.perf_logger.time_operation("branch_verify") as metrics:
            result = self.operations.verify_ref(f"refs/heads/{branch}")
            if result.timed_out or result.returncode is None:
                metrics.success = False
                raise self._stage_error(RecoveryFailure.BRANCH_VERIFY_FAILED, "branch_verify", result)

        state = BranchState(branch=branch, exists=result.success)
        self.logger.debug(f"Branch state: {state}", extra={'operation': 'branch_verify'})
        return state

    def _handle_history_rewrite(self, upstream: str) -> None:
        if self.history_policy is HistoryRewritePolicy.PULL:
            return

        with self.perf_logger.time_operation("history_check"):
            result = self.operations.is_ancestor("HEAD", upstream)

        if result.returncode == 0:
            return
        if result.returncode != 1:
            # Inconclusive; let pull surface whatever is wrong
            self.logger.warning(
                f"Could not compare HEAD with {upstream}: {self._redact(result.stderr).strip()}",
                extra={'operation': 'history_check'}
            )
            return

        if self.history_policy is HistoryRewritePolicy.FAIL:
            raise RecoveryError(
                RecoveryFailure.HISTORY_REWRITTEN,
                f"Local head is not an ancestor of {upstream}; remote history was rewritten",
                stdout=self._redact(result.stdout),
                stderr=self._redact(result.stderr),
                returncode=result.returncode
            )

        self.logger.warning(
            f"Local head is not an ancestor of {upstream}; resetting working copy to it",
            extra={'operation': 'history_check'}
        )
        self._run_stage(RecoveryFailure.RESET_FAILED, "reset", lambda: self.operations.reset_hard(upstream))

    def _run_stage(self, failure: RecoveryFailure, stage: str, action: Callable[[], CommandResult]) -> CommandResult:
        with self.perf_logger.time_operation(stage) as metrics:
            result = action()
            if not result.success:
                metrics.success = False

        if not result.success:
            # Reported once, by the scheduler's error handler
            raise self._stage_error(failure, stage, result)

        self.logger.info(f"{stage} completed", extra={'operation': stage})
        return result

    def _stage_error(self, failure: RecoveryFailure, stage: str, result: CommandResult) -> RecoveryError:
        stdout = self._redact(result.stdout)
        stderr = self._redact(result.stderr)
        if result.timed_out:
            return StageTimeoutError(
                failure,
                f"{stage} timed out",
                stdout=stdout,
                stderr=stderr,
                returncode=result.returncode
            )
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else f"exit status {result.returncode}"
        return RecoveryError(
            failure,
            f"{stage} failed: {detail}",
            stdout=stdout,
            stderr=stderr,
            returncode=result.returncode
        )

    def _redact(self, text: str) -> str:
        return redact(text, self.remote.token)
