"""
Replay of the append-only execution log.

The Recovery Manager trusts only the record log, never the instance header:
current_stage_index and a non-cancelled status are pure functions of the
committed history.
"""

from dataclasses import dataclass, replace

from stageforge.domain.exceptions import StorageError
from stageforge.domain.models import (
    StageExecutionRecord,
    StageOutcome,
    WorkflowInstance,
    WorkflowSnapshot,
    WorkflowStatus,
)


@dataclass(frozen=True)
class ReplayedState:
    """State reconstructed from history alone."""

    stage_index: int
    status: WorkflowStatus
    checkpoint: StageExecutionRecord | None


def replay_history(
    history: tuple[StageExecutionRecord, ...],
    stage_count: int,
    recorded_status: WorkflowStatus = WorkflowStatus.RUNNING,
) -> ReplayedState:
    """
    Rebuild stage index and status from the record log.

    Args:
        history: Records in append order
        stage_count: Number of stages in the lifecycle
        recorded_status: Status in the header; CANCELLED and FAILED are kept,
            since cancellation and exhausted retries are explicit decisions

    Returns:
        ReplayedState with the derived index, status and checkpoint

    Raises:
        StorageError: If the log is not a valid sequence (out-of-order
            success, gap in attempt numbers)
    """
    index = 0
    checkpoint: StageExecutionRecord | None = None
    last_attempt: dict[str, int] = {}

    for record in history:
        expected_attempt = last_attempt.get(record.stage_id, 0) + 1
        if record.attempt != expected_attempt:
            raise StorageError(
                f"Attempt gap for stage '{record.stage_id}': "
                f"expected {expected_attempt}, found {record.attempt}"
            )
        last_attempt[record.stage_id] = record.attempt

        if record.stage_order != index + 1:
            raise StorageError(
                f"Record for stage '{record.stage_id}' (order {record.stage_order}) "
                f"follows committed index {index}"
            )

        if record.outcome == StageOutcome.SUCCESS:
            index = record.stage_order
            checkpoint = record

    if recorded_status == WorkflowStatus.CANCELLED:
        status = WorkflowStatus.CANCELLED
    elif index == stage_count:
        status = WorkflowStatus.COMPLETED
    elif recorded_status == WorkflowStatus.FAILED:
        status = WorkflowStatus.FAILED
    elif not history and recorded_status == WorkflowStatus.PENDING:
        status = WorkflowStatus.PENDING
    else:
        status = WorkflowStatus.RUNNING

    return ReplayedState(stage_index=index, status=status, checkpoint=checkpoint)


def validate_append(
    snapshot: WorkflowSnapshot, record: StageExecutionRecord
) -> None:
    """
    Check that record may be appended to the snapshot's history.

    Raises:
        StorageError: If the record belongs to another instance, targets a
            stage other than the next one, or breaks attempt contiguity
    """
    instance = snapshot.instance
    if record.instance_id != instance.instance_id:
        raise StorageError(
            f"Record for {record.instance_id} cannot be appended to "
            f"{instance.instance_id}"
        )
    if record.stage_order != instance.current_stage_index + 1:
        raise StorageError(
            f"Record for stage order {record.stage_order} does not follow "
            f"committed index {instance.current_stage_index}"
        )
    expected = snapshot.last_attempt_number(record.stage_id) + 1
    if record.attempt != expected:
        raise StorageError(
            f"Attempt {record.attempt} for stage '{record.stage_id}' is not "
            f"contiguous (expected {expected})"
        )


def apply_commit(
    instance: WorkflowInstance,
    record: StageExecutionRecord,
    status: WorkflowStatus,
    updated_at: str,
) -> WorkflowInstance:
    """Header state after committing record; a SUCCESS advances the index."""
    index = instance.current_stage_index
    if record.outcome == StageOutcome.SUCCESS:
        index = record.stage_order
    return replace(
        instance,
        current_stage_index=index,
        status=status,
        updated_at=updated_at,
        in_flight=None,
    )
