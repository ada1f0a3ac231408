"""Tests for FilesystemWorkflowStore - persistent workflow storage."""

import json
from dataclasses import replace

import pytest

from stageforge.domain.exceptions import StorageError
from stageforge.domain.models import (
    AttemptMarker,
    StageOutcome,
    TokenUsage,
    WorkflowInstance,
    WorkflowStatus,
)
from stageforge.infrastructure.persistence.filesystem import (
    FORMAT_VERSION,
    FilesystemWorkflowStore,
    dict_to_record,
    record_to_dict,
)


@pytest.fixture
def fs_store(tmp_path):  # noqa: ANN001
    return FilesystemWorkflowStore(tmp_path / "store")


@pytest.fixture
def instance() -> WorkflowInstance:
    return WorkflowInstance(
        instance_id="wf-1",
        project_ref="acme/widget",
        current_stage_index=0,
        status=WorkflowStatus.RUNNING,
        created_at="2025-01-01T00:00:00+00:00",
        updated_at="2025-01-01T00:00:00+00:00",
    )


class TestFilesystemLayout:
    def test_init_creates_instances_dir(self, tmp_path):
        FilesystemWorkflowStore(tmp_path / "store")
        assert (tmp_path / "store" / "instances").is_dir()

    def test_document_format(self, fs_store, tmp_path, instance, make_record):
        fs_store.create(instance)
        fs_store.commit_advance("wf-1", make_record("draft", 1), WorkflowStatus.RUNNING)

        data = json.loads((tmp_path / "store" / "instances" / "wf-1.json").read_text())
        assert data["version"] == FORMAT_VERSION
        assert data["instance"]["current_stage_index"] == 1
        assert data["instance"]["in_flight"] is None
        assert data["history"][0]["outcome"] == "success"

    def test_no_temp_file_left(self, fs_store, tmp_path, instance):
        fs_store.create(instance)
        assert not list((tmp_path / "store" / "instances").glob("*.tmp"))


class TestDurability:
    """State survives a new store over the same directory."""

    def test_reopen_sees_history_and_marker(self, tmp_path, instance, make_record):
        first = FilesystemWorkflowStore(tmp_path / "store")
        first.create(instance)
        first.commit_advance("wf-1", make_record("draft", 1), WorkflowStatus.RUNNING)
        first.begin_attempt(
            "wf-1", AttemptMarker("review", 1, "2025-01-01T00:00:02+00:00"),
            WorkflowStatus.RUNNING,
        )

        reopened = FilesystemWorkflowStore(tmp_path / "store").load("wf-1")
        assert reopened.instance.current_stage_index == 1
        assert reopened.instance.in_flight.stage_id == "review"
        assert len(reopened.history) == 1

    def test_corrupt_document_raises_storage_error(self, fs_store, tmp_path, instance):
        fs_store.create(instance)
        (tmp_path / "store" / "instances" / "wf-1.json").write_text("{not json")
        with pytest.raises(StorageError, match="Failed to read"):
            fs_store.load("wf-1")

    def test_list_active_includes_unreadable_document(self, fs_store, tmp_path, instance):
        fs_store.create(instance)
        fs_store.create(replace(instance, instance_id="done", status=WorkflowStatus.COMPLETED))
        (tmp_path / "store" / "instances" / "bad.json").write_text("{not json")

        assert fs_store.list_active() == ["bad", "wf-1"]


class TestRecordSerialization:
    def test_record_fields_preserved(self, make_record):
        record = make_record(
            "draft", 1, 2, StageOutcome.FAILED, artifacts=(("output", "ref"),), error="boom"
        )
        data = record_to_dict(record)
        assert data["artifacts"] == {"output": "ref"}
        assert dict_to_record(data) == record

    def test_usage_and_cost(self, make_record):
        record = replace(
            make_record("draft", 1), cost=0.25, token_usage=TokenUsage(10, 20)
        )
        restored = dict_to_record(record_to_dict(record))
        assert restored.cost == 0.25
        assert restored.token_usage.total_tokens == 30

    def test_missing_optional_fields_default(self):
        record = dict_to_record(
            {
                "instance_id": "wf-1",
                "stage_id": "draft",
                "stage_order": 1,
                "attempt": 1,
                "started_at": "a",
                "finished_at": "b",
                "outcome": "vetoed",
            }
        )
        assert record.outcome == StageOutcome.VETOED
        assert record.artifacts == ()
        assert record.token_usage == TokenUsage()
