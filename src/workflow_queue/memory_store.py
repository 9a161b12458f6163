"""In-memory QueueStore used by tests and dry runs.

Behaves like SQLAlchemyQueueStore (ordering, expiry, monotonic status) but
keeps entries in a dict, so the queue protocol can be exercised
deterministically in a single process.
"""

from collections.abc import Collection, Mapping
from typing import override

from .errors import DataIntegrityError
from .schemas import WorkflowRecord, WorkflowStatus
from .store import Clock, QueueStore, check_extra_fields, epoch_now


class InMemoryQueueStore(QueueStore):
    """Dict-backed QueueStore keyed by (key, committed_at)."""

    def __init__(self, clock: Clock = epoch_now):
        self.clock: Clock = clock
        self.entries: dict[tuple[str, int], WorkflowRecord] = {}

    def _visible(self, key: str) -> list[WorkflowRecord]:
        now = self.clock()
        records = [r for (k, _), r in self.entries.items() if k == key and r.expires_at > now]
        return sorted(records, key=WorkflowRecord.sort_key)

    @override
    def put(self, record: WorkflowRecord) -> None:
        self.entries[(record.key, record.committed_at)] = record.model_copy(deep=True)

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
        extra_fields = extra_fields or {}
        check_extra_fields(extra_fields)

        record = self.entries.get((key, committed_at))
        if record is None or record.expires_at <= self.clock():
            return None
        if workflow_id is not None and record.workflow_id != workflow_id:
            return None

        updates = dict(extra_fields)
        if record.status.can_transition_to(status):
            updates["status"] = status
        updated = record.model_copy(update=updates, deep=True)
        self.entries[(key, committed_at)] = updated
        return updated.model_copy(deep=True)

    @override
    def query_by_partition(
        self,
        key: str,
        statuses: Collection[WorkflowStatus] | None = None,
        limit: int | None = None,
    ) -> list[WorkflowRecord]:
        records = self._visible(key)
        if statuses is not None:
            records = [r for r in records if r.status in statuses]
        if limit is not None:
            records = records[:limit]
        return [r.model_copy(deep=True) for r in records]

    def _query_one(self, key: str, field: str, value: str) -> WorkflowRecord | None:
        matches = [r for r in self._visible(key) if getattr(r, field) == value]
        if len(matches) > 1:
            raise DataIntegrityError(f"Found {len(matches)} entries in {key} with {field}={value}")
        return matches[0].model_copy(deep=True) if matches else None

    @override
    def query_by_workflow_id(self, key: str, workflow_id: str) -> WorkflowRecord | None:
        return self._query_one(key, "workflow_id", workflow_id)

    @override
    def query_by_commit(self, key: str, commit: str) -> WorkflowRecord | None:
        return self._query_one(key, "commit", commit)

    @override
    def scan_count(self, key: str) -> int:
        return len(self._visible(key))
