"""Workflow event emission service."""

import uuid
from datetime import UTC, datetime

from stageforge.domain.interfaces import WorkflowEventStoreInterface
from stageforge.domain.workflow_event import WorkflowEvent, WorkflowEventType


class WorkflowEventEmitter:
    """Emits workflow events to a store.

    Provides convenience methods for emitting common workflow events
    during execution, handling ID generation and timestamps. Without a
    store, every method is a no-op.
    """

    def __init__(self, event_store: WorkflowEventStoreInterface | None) -> None:
        self._store = event_store

    def _emit(self, event_type: WorkflowEventType, instance_id: str, **fields) -> None:
        if self._store is None:
            return
        self._store.store_event(
            WorkflowEvent(
                event_id=str(uuid.uuid4()),
                event_type=event_type,
                instance_id=instance_id,
                created_at=datetime.now(UTC).isoformat(),
                **fields,
            )
        )

    def attempt_start(self, instance_id: str, stage_id: str, attempt: int) -> None:
        """Emit ATTEMPT_START when an attempt marker is written."""
        self._emit(
            WorkflowEventType.ATTEMPT_START,
            instance_id,
            stage_id=stage_id,
            attempt=attempt,
        )

    def attempt_success(self, instance_id: str, stage_id: str, attempt: int) -> None:
        """Emit ATTEMPT_SUCCESS when a SUCCESS record commits."""
        self._emit(
            WorkflowEventType.ATTEMPT_SUCCESS,
            instance_id,
            stage_id=stage_id,
            attempt=attempt,
        )

    def attempt_failed(
        self,
        instance_id: str,
        stage_id: str,
        attempt: int,
        error_kind: str | None,
        error: str | None,
    ) -> None:
        """Emit ATTEMPT_FAILED when a FAILED record commits."""
        self._emit(
            WorkflowEventType.ATTEMPT_FAILED,
            instance_id,
            stage_id=stage_id,
            attempt=attempt,
            error_kind=error_kind,
            summary=(error or "")[:500],
        )

    def hook_veto(
        self,
        instance_id: str,
        stage_id: str,
        attempt: int,
        hook_name: str | None,
        message: str,
    ) -> None:
        """Emit HOOK_VETO when a mandatory hook refuses a transition."""
        self._emit(
            WorkflowEventType.HOOK_VETO,
            instance_id,
            stage_id=stage_id,
            attempt=attempt,
            hook_name=hook_name,
            summary=message[:500],
        )

    def stage_timeout(
        self, instance_id: str, stage_id: str, attempt: int, seconds: float
    ) -> None:
        """Emit STAGE_TIMEOUT when a handler exceeds its stage timeout."""
        self._emit(
            WorkflowEventType.STAGE_TIMEOUT,
            instance_id,
            stage_id=stage_id,
            attempt=attempt,
            error_kind="Timeout",
            summary=f"exceeded {seconds:g}s",
        )

    def cancelled(self, instance_id: str, stage_id: str | None = None) -> None:
        """Emit CANCELLED when an instance is cancelled."""
        self._emit(WorkflowEventType.CANCELLED, instance_id, stage_id=stage_id)

    def recovered(self, instance_id: str, summary: str) -> None:
        """Emit RECOVERED when recovery repairs an instance header."""
        self._emit(WorkflowEventType.RECOVERED, instance_id, summary=summary)
