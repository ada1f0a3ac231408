"""Application service for crash recovery.

Rebuilds each active instance's header from its append-only history. An
attempt that was in flight when the process died left only its marker
behind; clearing the marker makes that attempt indistinguishable from one
that never started, so the next advance re-runs it under the same number.
"""

import logging
from dataclasses import dataclass

from stageforge.application.workflow_event_emitter import WorkflowEventEmitter
from stageforge.domain.exceptions import StorageError
from stageforge.domain.interfaces import WorkflowStoreInterface
from stageforge.domain.models import AttemptMarker, WorkflowStatus
from stageforge.domain.replay import replay_history
from stageforge.domain.stages import StageRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecoveryReport:
    """Result of recovering one instance.

    Attributes:
        instance_id: The recovered instance.
        stage_index: Index re-derived from history.
        status: Status after recovery.
        checkpoint_stage: Stage of the last SUCCESS record, if any.
        interrupted: Attempt marker found and cleared, if any.
        repaired: Whether the stored header had to be rewritten.
        error: Why recovery failed, if it did.
    """

    instance_id: str
    stage_index: int = 0
    status: WorkflowStatus | None = None
    checkpoint_stage: str | None = None
    interrupted: AttemptMarker | None = None
    repaired: bool = False
    error: str | None = None


class RecoveryManager:
    """Re-derives committed state from history after a crash."""

    def __init__(
        self,
        store: WorkflowStoreInterface,
        stages: StageRegistry,
        emitter: WorkflowEventEmitter | None = None,
    ) -> None:
        self._store = store
        self._stages = stages
        self._emitter = emitter or WorkflowEventEmitter(None)

    def resume(self, instance_id: str) -> RecoveryReport:
        """Recover one instance.

        Raises:
            NotFound: If the instance does not exist.
            StorageError: If the history cannot be read or is inconsistent.
        """
        snapshot = self._store.load(instance_id)
        header = snapshot.instance
        replayed = replay_history(snapshot.history, len(self._stages), header.status)

        needs_repair = (
            header.in_flight is not None
            or header.current_stage_index != replayed.stage_index
            or header.status != replayed.status
        )
        if needs_repair:
            self._store.repair(instance_id, replayed.stage_index, replayed.status)
            summary = (
                f"index {header.current_stage_index}->{replayed.stage_index}, "
                f"status {header.status.value}->{replayed.status.value}"
            )
            if header.in_flight is not None:
                summary += (
                    f", cleared interrupted attempt {header.in_flight.attempt} "
                    f"of '{header.in_flight.stage_id}'"
                )
            logger.warning("[%s] Recovered: %s", instance_id, summary)
            self._emitter.recovered(instance_id, summary)

        return RecoveryReport(
            instance_id=instance_id,
            stage_index=replayed.stage_index,
            status=replayed.status,
            checkpoint_stage=(
                replayed.checkpoint.stage_id if replayed.checkpoint else None
            ),
            interrupted=header.in_flight,
            repaired=needs_repair,
        )

    def recover_all(self) -> list[RecoveryReport]:
        """Recover every non-terminal instance.

        An instance whose history cannot be replayed is reported with its
        error and left untouched; the others are still recovered.
        """
        reports = []
        for instance_id in self._store.list_active():
            try:
                reports.append(self.resume(instance_id))
            except StorageError as e:
                logger.error("[%s] Recovery failed: %s", instance_id, e)
                reports.append(RecoveryReport(instance_id=instance_id, error=str(e)))
        return reports
