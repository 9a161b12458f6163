"""Release: move this run's queue entry to a terminal status."""

import logging
from dataclasses import dataclass
from enum import StrEnum

from .schemas import WorkflowRecord, WorkflowStatus
from .store import Clock, QueueStore, epoch_now
from .workspace import RunWorkspace

logger = logging.getLogger(__name__)


class ReleaseWhen(StrEnum):
    """Which outcomes of the calling run trigger a release."""

    ALWAYS = "always"
    ON_FAIL = "on_fail"
    ON_SUCCESS = "on_success"

    def applies_to(self, succeeded: bool) -> bool:
        if self is ReleaseWhen.ON_FAIL:
            return not succeeded
        if self is ReleaseWhen.ON_SUCCESS:
            return succeeded
        return True


@dataclass(frozen=True)
class ReleaseOutcome:
    released: bool
    status: WorkflowStatus | None = None
    record: WorkflowRecord | None = None


class ReleaseController:
    """Releases the lock taken by admission using the persisted workflow key.

    Releasing is idempotent: once the entry is terminal its status never
    changes again, only ``released_at`` is refreshed.
    """

    def __init__(self, store: QueueStore, workspace: RunWorkspace, *, clock: Clock = epoch_now):
        self.store: QueueStore = store
        self.workspace: RunWorkspace = workspace
        self.clock: Clock = clock

    def terminal_status(self, succeeded: bool) -> WorkflowStatus:
        if self.workspace.load_cancel_decision() is not None:
            return WorkflowStatus.CANCELLED
        return WorkflowStatus.SUCCESS if succeeded else WorkflowStatus.FAILED

    def release(self, succeeded: bool, when: ReleaseWhen = ReleaseWhen.ALWAYS) -> ReleaseOutcome:
        """Release the entry if ``when`` matches the run's outcome.

        Args:
            succeeded: Whether the prior steps of the run succeeded
            when: Release condition

        Returns:
            ReleaseOutcome; ``released`` is False when nothing was written
        """
        if not when.applies_to(succeeded):
            logger.info("Release condition %s does not match outcome; skipping", when)
            return ReleaseOutcome(released=False)

        workflow_key = self.workspace.load_workflow_key()
        if workflow_key is None:
            logger.info("No workflow key persisted for this run; nothing to release")
            return ReleaseOutcome(released=False)

        status = self.terminal_status(succeeded)
        record = self.store.update_status(
            workflow_key.key,
            workflow_key.committed_at,
            status,
            {"released_at": self.clock()},
            workflow_id=workflow_key.workflow_id,
        )
        if record is None:
            logger.info(
                "Entry %s/%s no longer belongs to this run; treating release as done",
                workflow_key.key,
                workflow_key.committed_at,
            )
            return ReleaseOutcome(released=False, status=status)

        if record.status is not status:
            logger.info("Entry %s was already %s", record.workflow_id, record.status)
        else:
            logger.info("Released workflow %s as %s", record.workflow_id, record.status)
        return ReleaseOutcome(released=True, status=record.status, record=record)
