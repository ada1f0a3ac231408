"""Tests for replaying the execution log."""

from dataclasses import replace

import pytest

from stageforge.domain.exceptions import StorageError
from stageforge.domain.models import (
    AttemptMarker,
    StageOutcome,
    WorkflowInstance,
    WorkflowSnapshot,
    WorkflowStatus,
)
from stageforge.domain.replay import apply_commit, replay_history, validate_append


def _instance(index: int = 0, status=WorkflowStatus.RUNNING) -> WorkflowInstance:
    return WorkflowInstance(
        instance_id="wf-1",
        project_ref="acme/widget",
        current_stage_index=index,
        status=status,
        created_at="2025-01-01T00:00:00+00:00",
        updated_at="2025-01-01T00:00:00+00:00",
    )


class TestReplayHistory:
    """Tests for replay_history."""

    def test_empty_pending_history(self):
        state = replay_history((), 3, WorkflowStatus.PENDING)
        assert state.stage_index == 0
        assert state.status == WorkflowStatus.PENDING
        assert state.checkpoint is None

    def test_index_follows_successes(self, make_record):
        history = (
            make_record("draft", 1, 1, StageOutcome.FAILED, error="x"),
            make_record("draft", 1, 2),
            make_record("review", 2, 1),
        )
        state = replay_history(history, 3)
        assert state.stage_index == 2
        assert state.status == WorkflowStatus.RUNNING
        assert state.checkpoint == history[-1]

    def test_all_stages_completed(self, make_record):
        history = (
            make_record("draft", 1),
            make_record("review", 2),
            make_record("publish", 3),
        )
        assert replay_history(history, 3).status == WorkflowStatus.COMPLETED

    def test_header_index_is_ignored(self, make_record):
        """Status is derived from records even when the header says otherwise."""
        history = (make_record("draft", 1),)
        state = replay_history(history, 3, WorkflowStatus.WAITING_ON_HOOK)
        assert state.stage_index == 1
        assert state.status == WorkflowStatus.RUNNING

    def test_cancelled_is_kept(self, make_record):
        state = replay_history((make_record("draft", 1),), 3, WorkflowStatus.CANCELLED)
        assert state.status == WorkflowStatus.CANCELLED

    def test_failed_is_kept(self, make_record):
        history = (make_record("draft", 1, 1, StageOutcome.FAILED, error="x"),)
        state = replay_history(history, 3, WorkflowStatus.FAILED)
        assert state.status == WorkflowStatus.FAILED

    def test_attempt_gap_rejected(self, make_record):
        history = (make_record("draft", 1, 1, StageOutcome.FAILED, error="x"),
                   make_record("draft", 1, 3))
        with pytest.raises(StorageError, match="Attempt gap"):
            replay_history(history, 3)

    def test_out_of_order_stage_rejected(self, make_record):
        with pytest.raises(StorageError, match="follows committed index"):
            replay_history((make_record("review", 2),), 3)

    def test_replay_is_idempotent(self, make_record):
        history = (make_record("draft", 1), make_record("review", 2, 1, StageOutcome.VETOED))
        assert replay_history(history, 3) == replay_history(history, 3)


class TestValidateAppend:
    """Tests for validate_append."""

    def test_next_stage_first_attempt(self, make_record):
        validate_append(WorkflowSnapshot(_instance()), make_record("draft", 1))

    def test_wrong_instance(self, make_record):
        with pytest.raises(StorageError, match="cannot be appended"):
            validate_append(
                WorkflowSnapshot(_instance()),
                make_record("draft", 1, instance_id="wf-2"),
            )

    def test_skipping_a_stage(self, make_record):
        with pytest.raises(StorageError, match="does not follow"):
            validate_append(WorkflowSnapshot(_instance()), make_record("review", 2))

    def test_non_contiguous_attempt(self, make_record):
        snapshot = WorkflowSnapshot(
            _instance(), (make_record("draft", 1, 1, StageOutcome.FAILED, error="x"),)
        )
        with pytest.raises(StorageError, match="not contiguous"):
            validate_append(snapshot, make_record("draft", 1, 3))


class TestApplyCommit:
    """Tests for apply_commit."""

    def test_success_advances_and_clears_marker(self, make_record):
        instance = replace(_instance(), in_flight=AttemptMarker("draft", 1, "t"))
        updated = apply_commit(instance, make_record("draft", 1), WorkflowStatus.RUNNING, "t2")
        assert updated.current_stage_index == 1
        assert updated.in_flight is None
        assert updated.updated_at == "t2"

    def test_failure_keeps_index(self, make_record):
        record = make_record("draft", 1, 1, StageOutcome.FAILED, error="x")
        updated = apply_commit(_instance(), record, WorkflowStatus.FAILED, "t2")
        assert updated.current_stage_index == 0
        assert updated.status == WorkflowStatus.FAILED
