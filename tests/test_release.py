"""Tests for ReleaseController."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from workflow_queue import (
    CancelDecision,
    QueueStore,
    ReleaseController,
    ReleaseWhen,
    RunWorkspace,
    WorkflowRecord,
    WorkflowStatus,
)

from tests.conftest import LOCK_KEY, FakeClock

MakeRecord = Callable[..., WorkflowRecord]


@pytest.fixture
def controller(store: QueueStore, workspace: RunWorkspace, clock: FakeClock) -> ReleaseController:
    return ReleaseController(store, workspace, clock=clock)


@pytest.fixture
def running(store: QueueStore, workspace: RunWorkspace, make_record: MakeRecord) -> WorkflowRecord:
    record = make_record(100, WorkflowStatus.RUNNING)
    store.put(record)
    _ = workspace.save_workflow_key(record.workflow_key)
    return record


@pytest.mark.parametrize(
    ("when", "succeeded", "applies"),
    [
        (ReleaseWhen.ALWAYS, True, True),
        (ReleaseWhen.ALWAYS, False, True),
        (ReleaseWhen.ON_SUCCESS, True, True),
        (ReleaseWhen.ON_SUCCESS, False, False),
        (ReleaseWhen.ON_FAIL, True, False),
        (ReleaseWhen.ON_FAIL, False, True),
    ],
)
def test_release_when(when: ReleaseWhen, succeeded: bool, applies: bool) -> None:
    assert when.applies_to(succeeded) is applies


def test_release_success(
    controller: ReleaseController, store: QueueStore, running: WorkflowRecord, clock: FakeClock
) -> None:
    outcome = controller.release(succeeded=True)

    assert outcome.released
    assert outcome.status is WorkflowStatus.SUCCESS
    record = store.query_by_workflow_id(LOCK_KEY, running.workflow_id)
    assert record is not None
    assert record.status is WorkflowStatus.SUCCESS
    assert record.released_at == clock.now


def test_release_failure(
    controller: ReleaseController, store: QueueStore, running: WorkflowRecord
) -> None:
    outcome = controller.release(succeeded=False, when=ReleaseWhen.ON_FAIL)

    assert outcome.status is WorkflowStatus.FAILED


def test_release_skipped_when_condition_does_not_match(
    controller: ReleaseController, store: QueueStore, running: WorkflowRecord
) -> None:
    outcome = controller.release(succeeded=True, when=ReleaseWhen.ON_FAIL)

    assert not outcome.released
    record = store.query_by_workflow_id(LOCK_KEY, running.workflow_id)
    assert record is not None
    assert record.status is WorkflowStatus.RUNNING
    assert record.released_at is None


def test_release_is_idempotent(
    controller: ReleaseController, store: QueueStore, running: WorkflowRecord, clock: FakeClock
) -> None:
    first = controller.release(succeeded=True)
    clock.now += 30
    second = controller.release(succeeded=False)

    assert first.status is WorkflowStatus.SUCCESS
    assert second.status is WorkflowStatus.SUCCESS
    record = store.query_by_workflow_id(LOCK_KEY, running.workflow_id)
    assert record is not None
    assert record.status is WorkflowStatus.SUCCESS
    assert record.released_at == clock.now


def test_pending_cancellation_releases_as_cancelled(
    controller: ReleaseController, workspace: RunWorkspace, running: WorkflowRecord
) -> None:
    _ = workspace.save_cancel_decision(CancelDecision(workflow_id=running.workflow_id))

    outcome = controller.release(succeeded=True)

    assert outcome.status is WorkflowStatus.CANCELLED


def test_release_of_expired_entry_is_noop(
    controller: ReleaseController, running: WorkflowRecord, clock: FakeClock
) -> None:
    clock.now = running.expires_at + 1

    outcome = controller.release(succeeded=True)

    assert not outcome.released
    assert outcome.record is None


def test_release_without_persisted_key_is_noop(controller: ReleaseController) -> None:
    outcome = controller.release(succeeded=True)

    assert not outcome.released
    assert outcome.status is None


def test_release_leaves_replacing_attempt_untouched(
    controller: ReleaseController,
    store: QueueStore,
    running: WorkflowRecord,
    make_record: MakeRecord,
) -> None:
    """Test a rerun at the same commit time keeps its entry when the first attempt releases."""
    store.put(make_record(100, WorkflowStatus.RUNNING, workflow_id="wf-rerun"))

    outcome = controller.release(succeeded=False)

    assert not outcome.released
    record = store.query_by_workflow_id(LOCK_KEY, "wf-rerun")
    assert record is not None
    assert record.status is WorkflowStatus.RUNNING
    assert record.released_at is None
