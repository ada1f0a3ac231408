"""
Filesystem implementation of the workflow store.

Provides persistent storage with an append-only record log per instance.
Each instance lives in one JSON document holding its header and history:

{base_dir}/
    instances/
        {instance_id}.json

Every write replaces the whole document with write-to-temp + rename, so the
record append and the index advance land together or not at all.
"""

import json
import logging
import threading
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from stageforge.domain.exceptions import NotFound, StorageError
from stageforge.domain.interfaces import WorkflowStoreInterface
from stageforge.domain.models import (
    AttemptMarker,
    StageExecutionRecord,
    StageOutcome,
    TokenUsage,
    WorkflowInstance,
    WorkflowSnapshot,
    WorkflowStatus,
)
from stageforge.domain.replay import apply_commit, validate_append

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"


class FilesystemWorkflowStore(WorkflowStoreInterface):
    """
    Persistent workflow store.

    Safe for concurrent use by threads of one process. Running several
    processes against the same directory is not supported.
    """

    def __init__(self, base_dir: str | Path):
        self._base_dir = Path(base_dir)
        self._instances_dir = self._base_dir / "instances"
        self._instances_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def create(self, instance: WorkflowInstance) -> None:
        self.seed(instance, ())

    def seed(
        self,
        instance: WorkflowInstance,
        history: tuple[StageExecutionRecord, ...],
    ) -> None:
        with self._lock:
            if self._get_path(instance.instance_id).exists():
                raise StorageError(f"Instance already exists: {instance.instance_id}")
            self._write(WorkflowSnapshot(instance=instance, history=history))

    def load(self, instance_id: str) -> WorkflowSnapshot:
        with self._lock:
            return self._read(instance_id)

    def begin_attempt(
        self, instance_id: str, marker: AttemptMarker, status: WorkflowStatus
    ) -> WorkflowInstance:
        return self._update(instance_id, in_flight=marker, status=status)

    def commit_advance(
        self,
        instance_id: str,
        record: StageExecutionRecord,
        status: WorkflowStatus,
    ) -> WorkflowInstance:
        with self._lock:
            snapshot = self._read(instance_id)
            validate_append(snapshot, record)
            updated = apply_commit(snapshot.instance, record, status, _now())
            self._write(
                WorkflowSnapshot(instance=updated, history=snapshot.history + (record,))
            )
            return updated

    def abort_attempt(
        self, instance_id: str, status: WorkflowStatus
    ) -> WorkflowInstance:
        return self._update(instance_id, in_flight=None, status=status)

    def update_status(
        self, instance_id: str, status: WorkflowStatus
    ) -> WorkflowInstance:
        return self._update(instance_id, status=status)

    def repair(
        self, instance_id: str, stage_index: int, status: WorkflowStatus
    ) -> WorkflowInstance:
        return self._update(
            instance_id,
            current_stage_index=stage_index,
            status=status,
            in_flight=None,
        )

    def list_active(self) -> list[str]:
        with self._lock:
            active = []
            for path in sorted(self._instances_dir.glob("*.json")):
                try:
                    snapshot = self._read(path.stem)
                except StorageError as e:
                    logger.error("Unreadable instance file %s: %s", path.name, e)
                    active.append(path.stem)
                    continue
                if not snapshot.instance.is_terminal:
                    active.append(path.stem)
            return active

    # -------------------------------------------------------------------------
    # File handling
    # -------------------------------------------------------------------------

    def _get_path(self, instance_id: str) -> Path:
        return self._instances_dir / f"{instance_id}.json"

    def _update(self, instance_id: str, **changes: Any) -> WorkflowInstance:
        with self._lock:
            snapshot = self._read(instance_id)
            updated = replace(snapshot.instance, updated_at=_now(), **changes)
            self._write(replace(snapshot, instance=updated))
            return updated

    def _read(self, instance_id: str) -> WorkflowSnapshot:
        path = self._get_path(instance_id)
        if not path.exists():
            raise NotFound(instance_id)
        try:
            with open(path) as f:
                data = json.load(f)
            return _dict_to_snapshot(data)
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            raise StorageError(f"Failed to read instance {instance_id}: {e}") from e

    def _write(self, snapshot: WorkflowSnapshot) -> None:
        """Atomically replace the instance document using write-to-temp + rename."""
        path = self._get_path(snapshot.instance.instance_id)
        temp_path = path.with_suffix(".tmp")
        try:
            with open(temp_path, "w") as f:
                json.dump(_snapshot_to_dict(snapshot), f, indent=2)
            temp_path.replace(path)  # Atomic on POSIX
        except OSError as e:
            raise StorageError(
                f"Failed to write instance {snapshot.instance.instance_id}: {e}"
            ) from e


# =============================================================================
# SERIALIZATION
# =============================================================================


def _snapshot_to_dict(snapshot: WorkflowSnapshot) -> dict[str, Any]:
    instance = snapshot.instance
    marker = instance.in_flight
    return {
        "version": FORMAT_VERSION,
        "instance": {
            "instance_id": instance.instance_id,
            "project_ref": instance.project_ref,
            "current_stage_index": instance.current_stage_index,
            "status": instance.status.value,
            "created_at": instance.created_at,
            "updated_at": instance.updated_at,
            "in_flight": (
                {
                    "stage_id": marker.stage_id,
                    "attempt": marker.attempt,
                    "started_at": marker.started_at,
                }
                if marker
                else None
            ),
            "parent_instance_id": instance.parent_instance_id,
        },
        "history": [record_to_dict(r) for r in snapshot.history],
    }


def _dict_to_snapshot(data: dict[str, Any]) -> WorkflowSnapshot:
    header = data["instance"]
    marker = header.get("in_flight")
    instance = WorkflowInstance(
        instance_id=header["instance_id"],
        project_ref=header["project_ref"],
        current_stage_index=header["current_stage_index"],
        status=WorkflowStatus(header["status"]),
        created_at=header["created_at"],
        updated_at=header["updated_at"],
        in_flight=AttemptMarker(**marker) if marker else None,
        parent_instance_id=header.get("parent_instance_id"),
    )
    return WorkflowSnapshot(
        instance=instance,
        history=tuple(dict_to_record(r) for r in data.get("history", [])),
    )


def record_to_dict(record: StageExecutionRecord) -> dict[str, Any]:
    """Serialize a record to its JSON form."""
    return {
        "instance_id": record.instance_id,
        "stage_id": record.stage_id,
        "stage_order": record.stage_order,
        "attempt": record.attempt,
        "started_at": record.started_at,
        "finished_at": record.finished_at,
        "outcome": record.outcome.value,
        # Serialize tuple -> dict for JSON object format
        "artifacts": dict(record.artifacts),
        "error": record.error,
        "error_kind": record.error_kind,
        "cost": record.cost,
        "token_usage": {
            "prompt_tokens": record.token_usage.prompt_tokens,
            "completion_tokens": record.token_usage.completion_tokens,
        },
    }


def dict_to_record(data: dict[str, Any]) -> StageExecutionRecord:
    """Deserialize a record from its JSON form."""
    usage = data.get("token_usage") or {}
    return StageExecutionRecord(
        instance_id=data["instance_id"],
        stage_id=data["stage_id"],
        stage_order=data["stage_order"],
        attempt=data["attempt"],
        started_at=data["started_at"],
        finished_at=data["finished_at"],
        outcome=StageOutcome(data["outcome"]),
        # Deserialize dict -> tuple for immutability
        artifacts=tuple(data.get("artifacts", {}).items()),
        error=data.get("error"),
        error_kind=data.get("error_kind"),
        cost=data.get("cost", 0.0),
        token_usage=TokenUsage(
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
        ),
    )


def _now() -> str:
    return datetime.now(UTC).isoformat()
