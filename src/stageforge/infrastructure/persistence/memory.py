"""
In-memory implementation of the workflow store.

Useful for testing and ephemeral workflows.
"""

import threading
from dataclasses import replace
from datetime import UTC, datetime

from stageforge.domain.exceptions import NotFound, StorageError
from stageforge.domain.interfaces import WorkflowStoreInterface
from stageforge.domain.models import (
    AttemptMarker,
    StageExecutionRecord,
    WorkflowInstance,
    WorkflowSnapshot,
    WorkflowStatus,
)
from stageforge.domain.replay import apply_commit, validate_append


class InMemoryWorkflowStore(WorkflowStoreInterface):
    """Simple in-memory store for testing."""

    def __init__(self) -> None:
        self._instances: dict[str, WorkflowInstance] = {}
        self._history: dict[str, list[StageExecutionRecord]] = {}
        self._lock = threading.RLock()

    def create(self, instance: WorkflowInstance) -> None:
        self.seed(instance, ())

    def seed(
        self,
        instance: WorkflowInstance,
        history: tuple[StageExecutionRecord, ...],
    ) -> None:
        with self._lock:
            if instance.instance_id in self._instances:
                raise StorageError(f"Instance already exists: {instance.instance_id}")
            self._instances[instance.instance_id] = instance
            self._history[instance.instance_id] = list(history)

    def load(self, instance_id: str) -> WorkflowSnapshot:
        with self._lock:
            instance = self._get(instance_id)
            return WorkflowSnapshot(
                instance=instance, history=tuple(self._history[instance_id])
            )

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
            snapshot = self.load(instance_id)
            validate_append(snapshot, record)
            updated = apply_commit(snapshot.instance, record, status, _now())
            self._history[instance_id].append(record)
            self._instances[instance_id] = updated
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
            return [
                i.instance_id for i in self._instances.values() if not i.is_terminal
            ]

    def _get(self, instance_id: str) -> WorkflowInstance:
        if instance_id not in self._instances:
            raise NotFound(instance_id)
        return self._instances[instance_id]

    def _update(self, instance_id: str, **changes: object) -> WorkflowInstance:
        with self._lock:
            updated = replace(self._get(instance_id), updated_at=_now(), **changes)
            self._instances[instance_id] = updated
            return updated


def _now() -> str:
    return datetime.now(UTC).isoformat()
