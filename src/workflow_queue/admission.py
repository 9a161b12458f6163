"""Admission: wait in a workflow queue until this run is at the front.

A run enqueues itself under its partition key, then polls the store:

1. If a newer run is queued behind it, the run squashes itself: its entry is
   cancelled and a CancelDecision is written for a later step to enforce.
   The newer run is expected to contain this run's changes.
2. If its entry is the earliest active entry of the partition, it moves the
   entry to RUNNING and proceeds.
3. Otherwise it sleeps for the poll interval and tries again, until the
   attempts derived from ``wait_for`` are exhausted.

Nothing here is atomic. Two runs can both see themselves at the front
between a read and the following write; the protocol accepts that window.
"""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from .errors import AdmissionTimeout, PlatformError, ValidationError
from .platform import GitHubClient, RunContext
from .schemas import ACTIVE_STATUSES, CancelDecision, WorkflowRecord, WorkflowStatus
from .store import Clock, QueueStore, epoch_now
from .workspace import RunWorkspace

logger = logging.getLogger(__name__)


class AdmissionResult(StrEnum):
    SKIPPED = "skipped"
    ACQUIRED = "acquired"
    SQUASHED = "squashed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AdmissionSettings:
    """Tunables of one admission attempt.

    Attributes:
        wait_for: Minutes to wait for the lock
        poll_interval: Seconds between attempts
        ttl: Seconds until the entry expires
        check_previous_commit: Wait until the parent commit has an entry
        skip_disabled: Never squash this run (commit carries the no-cancel tag)
        force: Take the lock without waiting
    """

    wait_for: int = 240
    poll_interval: int = 10
    ttl: int = 7 * 86400
    check_previous_commit: bool = False
    skip_disabled: bool = False
    force: bool = False

    def __post_init__(self) -> None:
        for name in ("wait_for", "poll_interval", "ttl"):
            value = getattr(self, name)
            if value <= 0:
                raise ValidationError(f"{name} must be positive: {value}")

    @property
    def max_attempts(self) -> int:
        return max(1, math.ceil(self.wait_for * 60 / self.poll_interval))


@dataclass(frozen=True)
class AdmissionOutcome:
    result: AdmissionResult
    record: WorkflowRecord | None = None
    decision: CancelDecision | None = None
    attempts: int = 0

    @property
    def should_cancel(self) -> bool:
        return self.decision is not None


class AdmissionController:
    """Enqueues a run and waits for it to reach the front of its queue."""

    def __init__(
        self,
        store: QueueStore,
        workspace: RunWorkspace,
        *,
        clock: Clock = epoch_now,
        sleep: Callable[[float], None] = time.sleep,
        github: GitHubClient | None = None,
    ):
        self.store: QueueStore = store
        self.workspace: RunWorkspace = workspace
        self.clock: Clock = clock
        self.sleep: Callable[[float], None] = sleep
        self.github: GitHubClient | None = github

    # -------------------------------------------------------------------------
    # Queue position checks
    # -------------------------------------------------------------------------

    def is_end_of_queue(self, record: WorkflowRecord) -> bool:
        """True if no newer active entry is queued behind ``record``."""
        active = self.store.query_by_partition(record.key, ACTIVE_STATUSES)
        logger.info("There are %d active entries (including this one) in %s", len(active), record.key)
        if not active or active[-1].workflow_id == record.workflow_id:
            return True
        logger.info("Last entry in the queue is %s (%s)", active[-1].workflow_id, active[-1].commit)
        return False

    def is_front_of_queue(self, record: WorkflowRecord, previous_commit: str | None = None) -> bool:
        """True if ``record`` may take the lock.

        Args:
            record: This run's entry
            previous_commit: When given, the parent commit must already have an
                entry; commits merged seconds apart race to enqueue themselves
                and the later one can otherwise overtake the earlier.
        """
        if self.store.scan_count(record.key) == 0:
            logger.info("No entries found for lock key %s", record.key)
            return True

        if previous_commit and self.store.query_by_commit(record.key, previous_commit) is None:
            logger.info("Previous commit %s has no entry yet; waiting for it", previous_commit)
            return False

        front = self.store.query_by_partition(record.key, ACTIVE_STATUSES, limit=1)
        if not front or front[0].workflow_id == record.workflow_id:
            logger.info("Workflow %s is at the front of the queue", record.workflow_id)
            return True
        logger.info(
            "Workflow %s is not at the front of the queue. Next up: %s (%s)",
            record.workflow_id,
            front[0].workflow_id,
            front[0].commit,
        )
        return False

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _acquire(self, record: WorkflowRecord, context: RunContext, attempts: int) -> AdmissionOutcome:
        updated = self.store.update_status(
            record.key,
            record.committed_at,
            WorkflowStatus.RUNNING,
            {"acquired_at": self.clock()},
            workflow_id=record.workflow_id,
        )
        if updated is None:
            # Expired, or replaced by another attempt with the same commit time.
            logger.warning("Workflow %s no longer owns its queue entry", record.workflow_id)
            decision = CancelDecision(
                workflow_id=record.workflow_id,
                reason="entry was replaced or expired before the lock was acquired",
            )
            _ = self.workspace.save_cancel_decision(decision)
            return AdmissionOutcome(AdmissionResult.CANCELLED, None, decision, attempts)

        if updated.status is not WorkflowStatus.RUNNING:
            # An operator cancelled the entry while it was waiting.
            logger.warning("Workflow %s was %s while queued", record.workflow_id, updated.status)
            decision = CancelDecision(
                workflow_id=record.workflow_id,
                reason=f"entry was {updated.status} before the lock was acquired",
            )
            _ = self.workspace.save_cancel_decision(decision)
            return AdmissionOutcome(AdmissionResult.CANCELLED, updated, decision, attempts)

        logger.info("Commit %s has acquired the lock", record.commit)
        self._report_branch_head(context)
        return AdmissionOutcome(AdmissionResult.ACQUIRED, updated, None, attempts)

    def _squash(self, record: WorkflowRecord, attempts: int) -> AdmissionOutcome:
        logger.info("A newer commit has been added to the queue and is expected to contain these changes")
        logger.info(
            "Workflow %s will self-cancel and commit %s will be squashed into the next",
            record.workflow_id,
            record.commit,
        )
        updated = self.store.update_status(
            record.key,
            record.committed_at,
            WorkflowStatus.CANCELLED,
            {"released_at": self.clock()},
            workflow_id=record.workflow_id,
        )
        if updated is None:
            logger.info("Entry of %s was already replaced; leaving it untouched", record.workflow_id)
        decision = CancelDecision(
            workflow_id=record.workflow_id, reason="superseded by a newer commit"
        )
        _ = self.workspace.save_cancel_decision(decision)
        return AdmissionOutcome(AdmissionResult.SQUASHED, updated, decision, attempts)

    def _report_branch_head(self, context: RunContext) -> None:
        if self.github is None or not context.branch:
            return
        try:
            head = self.github.branch_head(
                context.project_username, context.project_reponame, context.branch
            )
        except PlatformError as exc:
            logger.warning("Could not check the head of %s: %s", context.branch, exc)
            return
        if head == context.commit:
            logger.info("%s is the head of %s", context.commit, context.branch)
        else:
            logger.info("%s is NOT the head of %s.", context.commit, context.branch)
            logger.info(
                "This is okay and could be the case if squashing is disabled "
                "or your pipeline filters out some commits."
            )

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def build_record(self, key: str, context: RunContext, committed_at: int, ttl: int) -> WorkflowRecord:
        now = self.clock()
        return WorkflowRecord(
            key=key,
            committed_at=committed_at,
            created_at=now,
            expires_at=now + ttl,
            build_num=context.build_num,
            commit=context.commit,
            username=context.username,
            workflow_id=context.workflow_id,
            status=WorkflowStatus.QUEUED,
            state={},
        )

    def admit(
        self,
        key: str | None,
        context: RunContext,
        committed_at: int,
        settings: AdmissionSettings,
        previous_commit: str | None = None,
    ) -> AdmissionOutcome:
        """Enqueue the run and wait until it holds the lock or is squashed.

        Args:
            key: Partition key; empty means the pipeline does not serialize
            context: Identifiers of the current run
            committed_at: Commit time of the run's revision (sort key)
            settings: Wait, polling and squashing behaviour
            previous_commit: Parent revision, used when
                ``settings.check_previous_commit`` is set

        Returns:
            AdmissionOutcome; a pending cancellation is in ``outcome.decision``

        Raises:
            AdmissionTimeout: The run never reached the front of the queue
            StoreError: Any store operation failed
        """
        if not key:
            logger.info("No lock key set. Continuing...")
            return AdmissionOutcome(AdmissionResult.SKIPPED)

        record = self.build_record(key, context, committed_at, settings.ttl)
        self.store.put(record)
        _ = self.workspace.save_workflow_key(record.workflow_key)
        logger.info("Added commit %s to the queue %s", record.commit, key)

        if settings.force:
            logger.info("Forcing workflow %s to the front of the queue", record.workflow_id)
            return self._acquire(record, context, attempts=0)

        if settings.skip_disabled:
            logger.info("Skip is disabled")
            logger.info(
                "Commit %s will not self-cancel and will wait until it acquires the lock or times out",
                record.commit,
            )

        check_commit = previous_commit if settings.check_previous_commit else None
        max_attempts = settings.max_attempts
        for attempt in range(1, max_attempts + 1):
            logger.info("Attempt: %d of %d", attempt, max_attempts)

            if not settings.skip_disabled:
                if not self.is_end_of_queue(record):
                    return self._squash(record, attempt)
                logger.info("Commit %s is last in the queue; waiting to acquire the lock", record.commit)

            if self.is_front_of_queue(record, check_commit):
                return self._acquire(record, context, attempt)

            if attempt < max_attempts:
                self.sleep(settings.poll_interval)

        logger.error("Failed to acquire lock")
        raise AdmissionTimeout(
            f"Workflow {record.workflow_id} did not reach the front of {key} "
            f"after {max_attempts} attempts"
        )
