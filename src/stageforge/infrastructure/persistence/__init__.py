"""
Persistence adapters for workflow state and the event trail.
"""

from stageforge.infrastructure.persistence.filesystem import FilesystemWorkflowStore
from stageforge.infrastructure.persistence.memory import InMemoryWorkflowStore
from stageforge.infrastructure.persistence.workflow_events import (
    FilesystemWorkflowEventStore,
    InMemoryWorkflowEventStore,
)

__all__ = [
    "InMemoryWorkflowStore",
    "FilesystemWorkflowStore",
    "InMemoryWorkflowEventStore",
    "FilesystemWorkflowEventStore",
]
