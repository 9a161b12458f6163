"""Tests for the QueueStore implementations."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.exc import OperationalError

from workflow_queue import (
    DataIntegrityError,
    QueueStore,
    SQLAlchemyQueueStore,
    StoreError,
    WorkflowRecord,
    WorkflowStatus,
)
from workflow_queue.schemas import ACTIVE_STATUSES

from tests.conftest import LOCK_KEY, FakeClock

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

MakeRecord = Callable[..., WorkflowRecord]


# ============================================================================
# Basic Operations Tests
# ============================================================================


def test_put_then_lookup_by_workflow_id(store: QueueStore, make_record: MakeRecord) -> None:
    """Test a stored entry is returned unchanged by the workflow_id index."""
    record = make_record(100)
    record.state["artifact"] = {"version": "1.2.3"}
    store.put(record)

    retrieved = store.query_by_workflow_id(LOCK_KEY, record.workflow_id)

    assert retrieved == record


def test_lookup_missing_workflow_id(store: QueueStore) -> None:
    assert store.query_by_workflow_id(LOCK_KEY, "missing") is None


def test_lookup_by_commit(store: QueueStore, make_record: MakeRecord) -> None:
    record = make_record(100, commit="abc123")
    store.put(record)

    assert store.query_by_commit(LOCK_KEY, "abc123") == record
    assert store.query_by_commit(LOCK_KEY, "def456") is None
    assert store.query_by_commit("other-key", "abc123") is None


def test_put_replaces_entry_with_same_commit_time(store: QueueStore, make_record: MakeRecord) -> None:
    """Test a re-run of the same commit replaces the earlier attempt."""
    first = make_record(100, workflow_id="wf-first")
    rerun = make_record(100, workflow_id="wf-rerun")
    store.put(first)
    store.put(rerun)

    assert store.scan_count(LOCK_KEY) == 1
    assert store.query_by_workflow_id(LOCK_KEY, "wf-first") is None
    assert store.query_by_workflow_id(LOCK_KEY, "wf-rerun") == rerun


def test_duplicate_workflow_id_is_integrity_error(store: QueueStore, make_record: MakeRecord) -> None:
    store.put(make_record(100, workflow_id="wf-dup"))
    store.put(make_record(200, workflow_id="wf-dup"))

    with pytest.raises(DataIntegrityError):
        _ = store.query_by_workflow_id(LOCK_KEY, "wf-dup")


# ============================================================================
# Partition Query Tests
# ============================================================================


def test_query_orders_by_commit_time(store: QueueStore, make_record: MakeRecord) -> None:
    for committed_at in (300, 100, 200):
        store.put(make_record(committed_at))

    records = store.query_by_partition(LOCK_KEY)

    assert [r.committed_at for r in records] == [100, 200, 300]


def test_query_filters_status_before_limit(store: QueueStore, make_record: MakeRecord) -> None:
    store.put(make_record(100, WorkflowStatus.SUCCESS))
    store.put(make_record(200, WorkflowStatus.FAILED))
    store.put(make_record(300, WorkflowStatus.RUNNING))
    store.put(make_record(400, WorkflowStatus.QUEUED))

    records = store.query_by_partition(LOCK_KEY, ACTIVE_STATUSES, limit=1)

    assert len(records) == 1
    assert records[0].committed_at == 300
    assert records[0].status is WorkflowStatus.RUNNING


def test_query_is_scoped_to_partition(store: QueueStore, make_record: MakeRecord) -> None:
    store.put(make_record(100))
    store.put(make_record(200, key="other-key"))

    assert [r.committed_at for r in store.query_by_partition(LOCK_KEY)] == [100]
    assert store.scan_count(LOCK_KEY) == 1
    assert store.scan_count("other-key") == 1
    assert store.scan_count("empty-key") == 0


def test_scan_count_ignores_status(store: QueueStore, make_record: MakeRecord) -> None:
    store.put(make_record(100, WorkflowStatus.CANCELLED))
    store.put(make_record(200, WorkflowStatus.SUCCESS))

    assert store.scan_count(LOCK_KEY) == 2
    assert store.query_by_partition(LOCK_KEY, ACTIVE_STATUSES) == []


def test_expired_entries_are_invisible(
    store: QueueStore, make_record: MakeRecord, clock: FakeClock
) -> None:
    store.put(make_record(100, ttl=60, workflow_id="wf-short"))
    store.put(make_record(200, ttl=3600))

    clock.now += 60

    assert [r.committed_at for r in store.query_by_partition(LOCK_KEY)] == [200]
    assert store.scan_count(LOCK_KEY) == 1
    assert store.query_by_workflow_id(LOCK_KEY, "wf-short") is None
    assert store.update_status(LOCK_KEY, 100, WorkflowStatus.RUNNING) is None


# ============================================================================
# Status Update Tests
# ============================================================================


def test_update_status_sets_fields(store: QueueStore, make_record: MakeRecord) -> None:
    store.put(make_record(100))

    updated = store.update_status(LOCK_KEY, 100, WorkflowStatus.RUNNING, {"acquired_at": 42})

    assert updated is not None
    assert updated.status is WorkflowStatus.RUNNING
    assert updated.acquired_at == 42
    assert store.query_by_partition(LOCK_KEY)[0] == updated


def test_update_status_missing_entry(store: QueueStore) -> None:
    assert store.update_status(LOCK_KEY, 100, WorkflowStatus.RUNNING) is None


@pytest.mark.parametrize(
    "terminal", [WorkflowStatus.SUCCESS, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED]
)
def test_terminal_status_never_changes(
    store: QueueStore, make_record: MakeRecord, terminal: WorkflowStatus
) -> None:
    store.put(make_record(100, terminal))

    for target in (WorkflowStatus.QUEUED, WorkflowStatus.RUNNING, WorkflowStatus.SUCCESS):
        updated = store.update_status(LOCK_KEY, 100, target, {"released_at": 7})
        assert updated is not None
        assert updated.status is terminal
        assert updated.released_at == 7


def test_running_cannot_return_to_queued(store: QueueStore, make_record: MakeRecord) -> None:
    store.put(make_record(100, WorkflowStatus.RUNNING))

    updated = store.update_status(LOCK_KEY, 100, WorkflowStatus.QUEUED)

    assert updated is not None
    assert updated.status is WorkflowStatus.RUNNING


def test_update_rejects_key_fields(store: QueueStore, make_record: MakeRecord) -> None:
    store.put(make_record(100))

    with pytest.raises(ValueError):
        _ = store.update_status(LOCK_KEY, 100, WorkflowStatus.RUNNING, {"workflow_id": "x"})


def test_update_status_checks_owner(store: QueueStore, make_record: MakeRecord) -> None:
    """Test a run cannot write to an entry another attempt has replaced."""
    store.put(make_record(100, workflow_id="wf-first"))
    store.put(make_record(100, workflow_id="wf-rerun"))

    refused = store.update_status(
        LOCK_KEY, 100, WorkflowStatus.CANCELLED, {"released_at": 7}, workflow_id="wf-first"
    )
    updated = store.update_status(LOCK_KEY, 100, WorkflowStatus.RUNNING, workflow_id="wf-rerun")

    assert refused is None
    assert updated is not None
    assert updated.workflow_id == "wf-rerun"
    assert updated.status is WorkflowStatus.RUNNING
    assert updated.released_at is None


# ============================================================================
# SQL Store Specific Tests
# ============================================================================


def test_purge_expired(
    sql_store: SQLAlchemyQueueStore, make_record: MakeRecord, clock: FakeClock
) -> None:
    sql_store.put(make_record(100, ttl=60))
    sql_store.put(make_record(200, ttl=3600))
    clock.now += 120

    assert sql_store.purge_expired() == 1
    assert sql_store.purge_expired() == 0
    assert sql_store.scan_count(LOCK_KEY) == 1


def test_from_url_creates_table(tmp_path, make_record: MakeRecord) -> None:
    database_url = f"sqlite:///{tmp_path / 'queue.db'}"
    store = SQLAlchemyQueueStore.from_url(database_url)
    record = make_record(100)
    record = record.model_copy(update={"expires_at": 4_000_000_000})
    store.put(record)

    reopened = SQLAlchemyQueueStore.from_url(database_url)
    assert reopened.query_by_workflow_id(LOCK_KEY, record.workflow_id) == record


def test_database_errors_become_store_errors(clock: FakeClock) -> None:
    def broken_session() -> Session:
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    store = SQLAlchemyQueueStore(broken_session, clock=clock)  # pyright: ignore[reportArgumentType]

    with pytest.raises(StoreError, match="database is locked"):
        _ = store.scan_count(LOCK_KEY)


def test_sort_key_breaks_commit_time_ties_by_workflow_id(make_record: MakeRecord) -> None:
    """Test identical commit times order deterministically by workflow_id."""
    a = make_record(100, workflow_id="wf-a")
    b = make_record(100, workflow_id="wf-b")
    c = make_record(50, workflow_id="wf-z")

    assert sorted([b, a, c], key=WorkflowRecord.sort_key) == [c, a, b]
