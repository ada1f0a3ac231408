"""Workflow execution trace models."""

from dataclasses import dataclass
from enum import Enum


class WorkflowEventType(str, Enum):
    """Types of workflow execution events."""

    ATTEMPT_START = "ATTEMPT_START"
    ATTEMPT_SUCCESS = "ATTEMPT_SUCCESS"
    ATTEMPT_FAILED = "ATTEMPT_FAILED"
    HOOK_VETO = "HOOK_VETO"
    STAGE_TIMEOUT = "STAGE_TIMEOUT"
    CANCELLED = "CANCELLED"
    RECOVERED = "RECOVERED"


@dataclass(frozen=True)
class WorkflowEvent:
    """Single workflow state transition.

    Observability only; recovery never reads events.
    """

    event_id: str
    event_type: WorkflowEventType
    instance_id: str
    stage_id: str | None = None
    attempt: int | None = None
    hook_name: str | None = None
    error_kind: str | None = None
    summary: str = ""
    created_at: str = ""  # ISO 8601
