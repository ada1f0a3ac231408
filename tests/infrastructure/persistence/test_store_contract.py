"""Store contract tests, run against both workflow store implementations."""

from dataclasses import replace

import pytest

from stageforge.domain.exceptions import NotFound, StorageError
from stageforge.domain.models import (
    AttemptMarker,
    StageOutcome,
    WorkflowInstance,
    WorkflowStatus,
)
from stageforge.infrastructure.persistence.filesystem import FilesystemWorkflowStore
from stageforge.infrastructure.persistence.memory import InMemoryWorkflowStore


@pytest.fixture(params=["memory", "filesystem"])
def store(request, tmp_path):  # noqa: ANN001
    if request.param == "memory":
        return InMemoryWorkflowStore()
    return FilesystemWorkflowStore(tmp_path / "store")


@pytest.fixture
def instance() -> WorkflowInstance:
    return WorkflowInstance(
        instance_id="wf-1",
        project_ref="acme/widget",
        current_stage_index=0,
        status=WorkflowStatus.PENDING,
        created_at="2025-01-01T00:00:00+00:00",
        updated_at="2025-01-01T00:00:00+00:00",
    )


MARKER = AttemptMarker("draft", 1, "2025-01-01T00:00:00+00:00")


class TestCreateAndLoad:
    """Tests for create/load."""

    def test_roundtrip(self, store, instance):
        store.create(instance)
        snapshot = store.load("wf-1")
        assert snapshot.instance == instance
        assert snapshot.history == ()

    def test_duplicate_create(self, store, instance):
        store.create(instance)
        with pytest.raises(StorageError, match="already exists"):
            store.create(instance)

    def test_load_unknown(self, store):
        with pytest.raises(NotFound):
            store.load("missing")

    def test_seed_with_history(self, store, instance, make_record):
        history = (make_record("draft", 1),)
        store.seed(instance, history)
        assert store.load("wf-1").history == history


class TestAttempts:
    """Tests for the attempt marker lifecycle."""

    def test_begin_sets_marker(self, store, instance):
        store.create(instance)
        updated = store.begin_attempt("wf-1", MARKER, WorkflowStatus.RUNNING)
        assert updated.in_flight == MARKER
        assert store.load("wf-1").instance.status == WorkflowStatus.RUNNING

    def test_commit_success_advances_atomically(self, store, instance, make_record):
        store.create(instance)
        store.begin_attempt("wf-1", MARKER, WorkflowStatus.RUNNING)
        record = make_record("draft", 1, artifacts=(("output", "ref"),))

        updated = store.commit_advance("wf-1", record, WorkflowStatus.RUNNING)

        snapshot = store.load("wf-1")
        assert updated.current_stage_index == 1
        assert snapshot.instance.in_flight is None
        assert snapshot.history == (record,)

    def test_commit_failure_keeps_index(self, store, instance, make_record):
        store.create(instance)
        record = make_record("draft", 1, 1, StageOutcome.FAILED, error="boom")
        updated = store.commit_advance("wf-1", record, WorkflowStatus.FAILED)
        assert updated.current_stage_index == 0
        assert updated.status == WorkflowStatus.FAILED

    def test_invalid_commit_leaves_store_untouched(self, store, instance, make_record):
        store.create(instance)
        store.begin_attempt("wf-1", MARKER, WorkflowStatus.RUNNING)
        with pytest.raises(StorageError):
            store.commit_advance("wf-1", make_record("review", 2), WorkflowStatus.RUNNING)

        snapshot = store.load("wf-1")
        assert snapshot.history == ()
        assert snapshot.instance.in_flight == MARKER
        assert snapshot.instance.current_stage_index == 0

    def test_abort_clears_marker(self, store, instance):
        store.create(instance)
        store.begin_attempt("wf-1", MARKER, WorkflowStatus.RUNNING)
        updated = store.abort_attempt("wf-1", WorkflowStatus.RUNNING)
        assert updated.in_flight is None


class TestStatusAndRepair:
    def test_update_status(self, store, instance):
        store.create(instance)
        store.update_status("wf-1", WorkflowStatus.CANCELLED)
        assert store.load("wf-1").instance.status == WorkflowStatus.CANCELLED

    def test_repair(self, store, instance):
        store.create(instance)
        store.begin_attempt("wf-1", MARKER, WorkflowStatus.WAITING_ON_HOOK)
        repaired = store.repair("wf-1", 0, WorkflowStatus.RUNNING)
        assert repaired.in_flight is None
        assert repaired.status == WorkflowStatus.RUNNING

    def test_list_active_excludes_terminal(self, store, instance):
        store.create(instance)
        store.create(replace(instance, instance_id="wf-2"))
        store.update_status("wf-2", WorkflowStatus.COMPLETED)
        assert store.list_active() == ["wf-1"]

    def test_update_unknown(self, store):
        with pytest.raises(NotFound):
            store.update_status("missing", WorkflowStatus.RUNNING)
