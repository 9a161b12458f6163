"""Queue store protocol and its SQLAlchemy implementation.

The store is the only state shared between pipeline runs. Every run talks to
it through the QueueStore protocol:

- put: upsert an entry keyed by (key, committed_at)
- update_status: monotonic status transition plus informational fields
- query_by_partition: entries of one partition ordered by queue position
- query_by_workflow_id / query_by_commit: secondary index point lookups
- scan_count: number of entries in a partition regardless of status

Reads are not linearizable with writes made by other runs. A run always sees
its own writes. Expired entries (expires_at in the past) are invisible.
"""

import logging
import time
from collections.abc import Callable, Collection, Iterator, Mapping
from contextlib import contextmanager
from typing import Final, Protocol, override

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .entry_translator import db_entry_to_record, record_to_db_entry
from .errors import DataIntegrityError, StoreError
from .models import Base, WorkflowQueueEntry
from .schemas import WorkflowRecord, WorkflowStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], int]

# Fields update_status may set besides status. Key fields are immutable.
UPDATABLE_FIELDS: Final[frozenset[str]] = frozenset(
    {"acquired_at", "released_at", "expires_at", "state"}
)


def epoch_now() -> int:
    """Current time in whole epoch seconds."""
    return int(time.time())


def check_extra_fields(extra_fields: Mapping[str, object]) -> None:
    unknown = set(extra_fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")


class QueueStore(Protocol):
    """Typed operations against the shared workflow queue store."""

    def put(self, record: WorkflowRecord) -> None: ...

    def update_status(
        self,
        key: str,
        committed_at: int,
        status: WorkflowStatus,
        extra_fields: Mapping[str, object] | None = None,
        *,
        workflow_id: str | None = None,
    ) -> WorkflowRecord | None: ...

    def query_by_partition(
        self,
        key: str,
        statuses: Collection[WorkflowStatus] | None = None,
        limit: int | None = None,
    ) -> list[WorkflowRecord]: ...

    def query_by_workflow_id(self, key: str, workflow_id: str) -> WorkflowRecord | None: ...

    def query_by_commit(self, key: str, commit: str) -> WorkflowRecord | None: ...

    def scan_count(self, key: str) -> int: ...


class SQLAlchemyQueueStore(QueueStore):
    """SQLAlchemy implementation of the QueueStore protocol.

    Works against any database SQLAlchemy supports; every run of a pipeline
    must point at the same database. Expiry is emulated by filtering on
    expires_at at read time; purge_expired() removes expired rows physically.

    Example:
        store = SQLAlchemyQueueStore.from_url("sqlite:///workflows.db")
        store.put(record)
        front = store.query_by_partition("deploy", ACTIVE_STATUSES, limit=1)
    """

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock = epoch_now):
        """Initialize store with a session factory.

        Args:
            session_factory: SQLAlchemy session factory (sessionmaker)
            clock: Returns the current epoch seconds; used for expiry
        """
        self.session_factory: sessionmaker[Session] = session_factory
        self.clock: Clock = clock

    @classmethod
    def from_url(cls, database_url: str, clock: Clock = epoch_now) -> "SQLAlchemyQueueStore":
        """Create a store for ``database_url``, creating the table if needed."""
        try:
            engine = create_engine(database_url)
            Base.metadata.create_all(engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to open workflow store {database_url}: {exc}") from exc
        return cls(sessionmaker(bind=engine), clock=clock)

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with self.session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StoreError(f"Workflow store {operation} failed: {exc}") from exc

    def _unexpired(self, key: str):
        return (WorkflowQueueEntry.key == key, WorkflowQueueEntry.expires_at > self.clock())

    @override
    def put(self, record: WorkflowRecord) -> None:
        """Insert or replace the entry at (key, committed_at)."""
        with self._session("put") as session:
            _ = session.merge(record_to_db_entry(record))
            session.commit()
        logger.debug("Put %s/%s (%s)", record.key, record.committed_at, record.workflow_id)

    @override
    def update_status(
        self,
        key: str,
        committed_at: int,
        status: WorkflowStatus,
        extra_fields: Mapping[str, object] | None = None,
        *,
        workflow_id: str | None = None,
    ) -> WorkflowRecord | None:
        """Move an entry to ``status`` and set ``extra_fields``.

        The status only changes when the transition is allowed; extra fields
        are written either way. When ``workflow_id`` is given the entry must
        belong to that run; a run never writes to an entry that another attempt
        with the same commit time has replaced.

        Returns:
            The entry after the update, or None if it does not exist, expired,
            or belongs to another run
        """
        extra_fields = extra_fields or {}
        check_extra_fields(extra_fields)

        with self._session("update") as session:
            stmt = select(WorkflowQueueEntry).where(
                *self._unexpired(key), WorkflowQueueEntry.committed_at == committed_at
            )
            if workflow_id is not None:
                stmt = stmt.where(WorkflowQueueEntry.workflow_id == workflow_id)
            db_entry = session.execute(stmt).scalar_one_or_none()
            if db_entry is None:
                return None

            current = WorkflowStatus(db_entry.status)
            if current.can_transition_to(status):
                db_entry.status = status.value
            elif current is not status:
                logger.info(
                    "Refusing status change %s -> %s for %s", current, status, db_entry.workflow_id
                )
            for field, value in extra_fields.items():
                setattr(db_entry, field, value)

            session.commit()
            session.refresh(db_entry)
            return db_entry_to_record(db_entry)

    @override
    def query_by_partition(
        self,
        key: str,
        statuses: Collection[WorkflowStatus] | None = None,
        limit: int | None = None,
    ) -> list[WorkflowRecord]:
        """List entries of a partition in queue order.

        Args:
            key: Partition key
            statuses: Only return entries with one of these statuses (None: all)
            limit: Maximum number of entries, applied after the status filter

        Returns:
            Records ordered by (committed_at, workflow_id)
        """
        stmt = (
            select(WorkflowQueueEntry)
            .where(*self._unexpired(key))
            .order_by(WorkflowQueueEntry.committed_at, WorkflowQueueEntry.workflow_id)
        )
        if statuses is not None:
            stmt = stmt.where(WorkflowQueueEntry.status.in_([s.value for s in statuses]))
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._session("query") as session:
            return [db_entry_to_record(e) for e in session.execute(stmt).scalars()]

    def _query_one(self, key: str, column, value: str, operation: str) -> WorkflowRecord | None:
        stmt = select(WorkflowQueueEntry).where(*self._unexpired(key), column == value)
        with self._session(operation) as session:
            matches = list(session.execute(stmt).scalars())
            if len(matches) > 1:
                raise DataIntegrityError(
                    f"Found {len(matches)} entries in {key} with {column.key}={value}"
                )
            return db_entry_to_record(matches[0]) if matches else None

    @override
    def query_by_workflow_id(self, key: str, workflow_id: str) -> WorkflowRecord | None:
        return self._query_one(key, WorkflowQueueEntry.workflow_id, workflow_id, "workflow lookup")

    @override
    def query_by_commit(self, key: str, commit: str) -> WorkflowRecord | None:
        return self._query_one(key, WorkflowQueueEntry.commit, commit, "commit lookup")

    @override
    def scan_count(self, key: str) -> int:
        stmt = select(func.count()).select_from(WorkflowQueueEntry).where(*self._unexpired(key))
        with self._session("scan") as session:
            return session.execute(stmt).scalar_one()

    def purge_expired(self) -> int:
        """Delete every expired entry in all partitions.

        Returns:
            Number of deleted entries
        """
        stmt = delete(WorkflowQueueEntry).where(WorkflowQueueEntry.expires_at <= self.clock())
        with self._session("purge") as session:
            result = session.execute(stmt)
            session.commit()
        deleted: int = result.rowcount  # pyright: ignore[reportAttributeAccessIssue]
        logger.info("Purged %d expired workflow entries", deleted)
        return deleted
