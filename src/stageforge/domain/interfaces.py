"""
Domain interfaces (Ports) for the stage orchestration engine.

These abstract base classes define the contracts that adapters and
caller-supplied code must satisfy. They have no external dependencies.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from stageforge.domain.cancellation import CancellationToken
    from stageforge.domain.context import HookContext, ProviderCall, StageContext
    from stageforge.domain.models import (
        AttemptMarker,
        DispatchResult,
        HookResult,
        ProviderConfig,
        ProviderResponse,
        StageExecutionRecord,
        StageInput,
        WorkflowInstance,
        WorkflowSnapshot,
        WorkflowStatus,
    )
    from stageforge.domain.workflow_event import WorkflowEvent, WorkflowEventType


class ProviderInterface(ABC):
    """
    Port for one language-model backend.

    Note (Cancellation):
        call.cancel_token is cancelled when the owning stage times out or the
        workflow is cancelled. Adapters that can abort an in-progress request
        should register a callback with call.cancel_token.on_cancel().
    """

    def __init__(self, config: "ProviderConfig") -> None:
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    def send(
        self,
        call: "ProviderCall",
        rendered_prompt: str,
        params: Mapping[str, Any],
    ) -> "ProviderResponse":
        """
        Send one prompt upstream.

        Args:
            call: Session history, model, timeout and cancellation for this call
            rendered_prompt: The fully rendered user prompt
            params: Sampling parameters (temperature, max_tokens, ...)

        Returns:
            The response text and token usage

        Raises:
            RateLimited: The backend throttled the request
            Timeout: The backend did not answer in time
            ProviderError: Any other backend failure
        """
        pass


class AgentSessionInterface(ABC):
    """Port through which a stage handler talks to language models."""

    session_id: str

    @abstractmethod
    def dispatch(
        self, rendered_prompt: str, params: Mapping[str, Any] | None = None
    ) -> "DispatchResult":
        """Send a prompt within the session's context window."""
        pass


class StageHandlerInterface(ABC):
    """
    Port for the code that performs one lifecycle stage.

    Note (Idempotency):
        Handlers may be re-invoked for the same (instance, stage, attempt)
        after a crash. Artifact writes should be keyed with
        context.artifact_key() so that repeating them is harmless.
    """

    @abstractmethod
    def execute(
        self, context: "StageContext", stage_input: "StageInput"
    ) -> Mapping[str, str]:
        """
        Run the stage.

        Args:
            context: Cancellation, attempt number and the agent session
            stage_input: Project reference and artifacts of earlier stages

        Returns:
            Artifacts produced, as a mapping of name to opaque reference

        Raises:
            Exception: Any failure; the orchestrator applies the retry policy
        """
        pass


class HookInterface(ABC):
    """Port for a pre/post stage hook. Hooks must be idempotent."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def run(self, context: "HookContext") -> "HookResult":
        """Return HookResult(passed=False) (or raise) to signal failure."""
        pass


class PromptCacheInterface(ABC):
    """Port for the content-addressed prompt cache."""

    @abstractmethod
    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], "ProviderResponse"],
        cancel_token: "CancellationToken | None" = None,
    ) -> tuple["ProviderResponse", bool]:
        """
        Return the cached response for key, computing it at most once.

        Returns:
            (response, hit) where hit is False only for the caller whose
            compute function produced the response
        """
        pass


class WorkflowStoreInterface(ABC):
    """
    Port for durable workflow state.

    History is an append-only log of StageExecutionRecords per instance;
    replaying it reconstructs current_stage_index.
    """

    @abstractmethod
    def create(self, instance: "WorkflowInstance") -> None:
        """Persist a new instance. Raises StorageError if the id exists."""
        pass

    @abstractmethod
    def seed(
        self,
        instance: "WorkflowInstance",
        history: tuple["StageExecutionRecord", ...],
    ) -> None:
        """Persist a new instance together with an initial history."""
        pass

    @abstractmethod
    def load(self, instance_id: str) -> "WorkflowSnapshot":
        """Load an instance and its history. Raises NotFound."""
        pass

    @abstractmethod
    def begin_attempt(
        self, instance_id: str, marker: "AttemptMarker", status: "WorkflowStatus"
    ) -> "WorkflowInstance":
        """Record that an attempt is in flight."""
        pass

    @abstractmethod
    def commit_advance(
        self,
        instance_id: str,
        record: "StageExecutionRecord",
        status: "WorkflowStatus",
    ) -> "WorkflowInstance":
        """
        Atomically append a record, set status and clear the in-flight marker.

        A SUCCESS record also advances current_stage_index to
        record.stage_order. Either every change is applied or none is.

        Raises:
            StorageError: On write failure or an out-of-order record
        """
        pass

    @abstractmethod
    def abort_attempt(
        self, instance_id: str, status: "WorkflowStatus"
    ) -> "WorkflowInstance":
        """Clear the in-flight marker without appending a record."""
        pass

    @abstractmethod
    def update_status(
        self, instance_id: str, status: "WorkflowStatus"
    ) -> "WorkflowInstance":
        """Set the instance status."""
        pass

    @abstractmethod
    def repair(
        self, instance_id: str, stage_index: int, status: "WorkflowStatus"
    ) -> "WorkflowInstance":
        """Overwrite header state derived by replay and clear any marker."""
        pass

    @abstractmethod
    def list_active(self) -> list[str]:
        """Ids of instances not in a terminal status.

        Instances whose state cannot be read are included, so recovery can
        report them.
        """
        pass


class WorkflowEventStoreInterface(ABC):
    """Port for the observability event trail."""

    @abstractmethod
    def store_event(self, event: "WorkflowEvent") -> str:
        pass

    @abstractmethod
    def get_events(
        self,
        instance_id: str,
        event_type: "WorkflowEventType | None" = None,
        stage_id: str | None = None,
    ) -> list["WorkflowEvent"]:
        pass
