"""
Execution contexts handed across the engine's ports.

ProviderCall travels from the agent manager to a provider adapter;
StageContext travels from the orchestrator to a stage handler; HookContext
to each hook.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from stageforge.domain.cancellation import CancellationToken
from stageforge.domain.models import HookPhase, StageDefinition, Turn

if TYPE_CHECKING:
    from stageforge.domain.interfaces import AgentSessionInterface


@dataclass(frozen=True)
class ProviderCall:
    """Per-call context for a provider adapter."""

    session_id: str
    model: str
    history: tuple[Turn, ...]  # Context window preceding the prompt
    timeout: float
    cancel_token: CancellationToken


@dataclass(frozen=True)
class StageContext:
    """Context for one stage attempt."""

    instance_id: str
    stage: StageDefinition
    attempt: int
    cancel_token: CancellationToken
    agent: "AgentSessionInterface"

    def artifact_key(self, name: str) -> str:
        """Storage key for an artifact, stable across re-invocations."""
        return f"{self.instance_id}/{self.stage.stage_id}/{self.attempt}/{name}"

    def checkpoint(self) -> None:
        """Cancellation checkpoint for handlers."""
        self.cancel_token.raise_if_cancelled()


@dataclass(frozen=True)
class HookContext:
    """Context for one hook invocation."""

    instance_id: str
    project_ref: str
    stage: StageDefinition
    phase: HookPhase
    attempt: int
    artifacts: Mapping[str, str] = field(default_factory=dict)  # POST only
