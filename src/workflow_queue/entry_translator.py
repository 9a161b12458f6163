"""Conversions between the SQL entry model and WorkflowRecord."""

from .models import WorkflowQueueEntry
from .schemas import WorkflowRecord, WorkflowStatus


def db_entry_to_record(db_entry: WorkflowQueueEntry) -> WorkflowRecord:
    """Convert SQLAlchemy WorkflowQueueEntry to Pydantic WorkflowRecord.

    Returns:
        Pydantic WorkflowRecord with all entry fields
    """
    return WorkflowRecord(
        key=db_entry.key,
        committed_at=db_entry.committed_at,
        created_at=db_entry.created_at,
        expires_at=db_entry.expires_at,
        acquired_at=db_entry.acquired_at,
        released_at=db_entry.released_at,
        build_num=db_entry.build_num,
        commit=db_entry.commit,
        username=db_entry.username,
        workflow_id=db_entry.workflow_id,
        status=WorkflowStatus(db_entry.status),
        state=db_entry.state or {},
    )


def record_to_db_entry(record: WorkflowRecord) -> WorkflowQueueEntry:
    """Create SQLAlchemy WorkflowQueueEntry from Pydantic WorkflowRecord.

    Args:
        record: Pydantic WorkflowRecord

    Returns:
        SQLAlchemy WorkflowQueueEntry instance (not persisted)
    """
    return WorkflowQueueEntry(
        key=record.key,
        committed_at=record.committed_at,
        created_at=record.created_at,
        expires_at=record.expires_at,
        acquired_at=record.acquired_at,
        released_at=record.released_at,
        build_num=record.build_num,
        commit=record.commit,
        username=record.username,
        workflow_id=record.workflow_id,
        status=record.status.value,
        state=dict(record.state),
    )
