"""
Pydantic schemas for workflow queue entries.
Shared between the admission, release and query sides.
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, JsonValue


class WorkflowStatus(StrEnum):
    """Lifecycle status of a queue entry."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active

    def can_transition_to(self, target: "WorkflowStatus") -> bool:
        """Whether moving from this status to ``target`` keeps the lifecycle monotonic.

        QUEUED may move to RUNNING or any terminal status, RUNNING only to a
        terminal status, and terminal statuses never move.
        """
        if self is WorkflowStatus.QUEUED:
            return target is not WorkflowStatus.QUEUED
        if self is WorkflowStatus.RUNNING:
            return target.is_terminal
        return False


ACTIVE_STATUSES: frozenset[WorkflowStatus] = frozenset(
    {WorkflowStatus.QUEUED, WorkflowStatus.RUNNING}
)
ALL_STATUSES: tuple[WorkflowStatus, ...] = (
    WorkflowStatus.RUNNING,
    WorkflowStatus.QUEUED,
    WorkflowStatus.SUCCESS,
    WorkflowStatus.FAILED,
    WorkflowStatus.CANCELLED,
)


class WorkflowKey(BaseModel):
    """Primary key of a queue entry plus the run that owns it.

    Persisted between admission and release. Another attempt with the same
    commit time can replace the entry, so writes check workflow_id too.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Partition key")
    committed_at: int = Field(..., description="Commit time in epoch seconds")
    workflow_id: str = Field(..., min_length=1, description="Run that owns the entry")


class WorkflowRecord(BaseModel):
    """One run attempt waiting in (or finished with) a workflow queue."""

    key: str = Field(..., min_length=1, description="Partition key")
    committed_at: int = Field(..., description="Sort key: commit time in epoch seconds")
    created_at: int
    expires_at: int
    acquired_at: int | None = None
    released_at: int | None = None
    build_num: int = 0
    commit: str
    username: str = "unknown"
    workflow_id: str = Field(..., min_length=1)
    status: WorkflowStatus = WorkflowStatus.QUEUED
    state: dict[str, JsonValue] = Field(default_factory=dict)

    @property
    def workflow_key(self) -> WorkflowKey:
        return WorkflowKey(
            key=self.key, committed_at=self.committed_at, workflow_id=self.workflow_id
        )

    def sort_key(self) -> tuple[int, str]:
        """Queue order: commit time, then workflow id for identical commit times."""
        return (self.committed_at, self.workflow_id)


class CancelDecision(BaseModel):
    """Cancellation decided during admission, enforced by a later step."""

    workflow_id: str
    status: WorkflowStatus = WorkflowStatus.CANCELLED
    reason: str = ""
