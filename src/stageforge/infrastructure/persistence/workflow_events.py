"""Workflow event store implementations."""

import json
import threading
from pathlib import Path
from typing import Any

from stageforge.domain.interfaces import WorkflowEventStoreInterface
from stageforge.domain.workflow_event import WorkflowEvent, WorkflowEventType


class InMemoryWorkflowEventStore(WorkflowEventStoreInterface):
    """In-memory implementation for testing."""

    def __init__(self) -> None:
        self._events: list[WorkflowEvent] = []
        self._lock = threading.Lock()

    def store_event(self, event: WorkflowEvent) -> str:
        with self._lock:
            self._events.append(event)
        return event.event_id

    def get_events(
        self,
        instance_id: str,
        event_type: WorkflowEventType | None = None,
        stage_id: str | None = None,
    ) -> list[WorkflowEvent]:
        with self._lock:
            events = list(self._events)
        return sorted(
            [
                e
                for e in events
                if e.instance_id == instance_id
                and (event_type is None or e.event_type == event_type)
                and (stage_id is None or e.stage_id == stage_id)
            ],
            key=lambda e: e.created_at,
        )


class FilesystemWorkflowEventStore(WorkflowEventStoreInterface):
    """Filesystem implementation storing events as JSONL, one file per instance."""

    def __init__(self, base_path: Path) -> None:
        self.base_path = Path(base_path)
        self.events_dir = self.base_path / "events"
        self.events_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _get_instance_file(self, instance_id: str) -> Path:
        return self.events_dir / f"{instance_id}.jsonl"

    def store_event(self, event: WorkflowEvent) -> str:
        path = self._get_instance_file(event.instance_id)
        with self._lock, open(path, "a") as f:
            f.write(json.dumps(self._event_to_dict(event)) + "\n")
        return event.event_id

    def get_events(
        self,
        instance_id: str,
        event_type: WorkflowEventType | None = None,
        stage_id: str | None = None,
    ) -> list[WorkflowEvent]:
        path = self._get_instance_file(instance_id)
        if not path.exists():
            return []
        events: list[WorkflowEvent] = []
        with open(path) as f:
            for line in f:
                event = self._dict_to_event(json.loads(line))
                if event_type and event.event_type != event_type:
                    continue
                if stage_id and event.stage_id != stage_id:
                    continue
                events.append(event)
        return sorted(events, key=lambda e: e.created_at)

    def _event_to_dict(self, event: WorkflowEvent) -> dict[str, Any]:
        """Serialize event to dict."""
        return {
            "event_id": event.event_id,
            "event_type": event.event_type.value,
            "instance_id": event.instance_id,
            "stage_id": event.stage_id,
            "attempt": event.attempt,
            "hook_name": event.hook_name,
            "error_kind": event.error_kind,
            "summary": event.summary,
            "created_at": event.created_at,
        }

    def _dict_to_event(self, data: dict[str, Any]) -> WorkflowEvent:
        """Deserialize dict to event."""
        return WorkflowEvent(
            event_id=data["event_id"],
            event_type=WorkflowEventType(data["event_type"]),
            instance_id=data["instance_id"],
            stage_id=data.get("stage_id"),
            attempt=data.get("attempt"),
            hook_name=data.get("hook_name"),
            error_kind=data.get("error_kind"),
            summary=data.get("summary", ""),
            created_at=data.get("created_at", ""),
        )
