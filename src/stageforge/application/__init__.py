"""
Application layer for the stage orchestration engine.

Contains use cases that compose the domain ports: the orchestrator, the
agent manager, hooks and crash recovery.
"""

from stageforge.application.agent_manager import AgentManager, AgentSession
from stageforge.application.handlers import (
    InMemoryArtifactWriter,
    PromptStageHandler,
    default_template,
)
from stageforge.application.hooks import (
    ALL_STAGES,
    CallableHook,
    Hook,
    HookOutcome,
    HookPipeline,
)
from stageforge.application.orchestrator import Orchestrator
from stageforge.application.rate_limiter import TokenBucket
from stageforge.application.recovery import RecoveryManager, RecoveryReport
from stageforge.application.registry import EngineRegistry
from stageforge.application.workflow_event_emitter import WorkflowEventEmitter

__all__ = [
    # Orchestration
    "Orchestrator",
    "EngineRegistry",
    "RecoveryManager",
    "RecoveryReport",
    # Agents
    "AgentManager",
    "AgentSession",
    "TokenBucket",
    # Hooks
    "ALL_STAGES",
    "CallableHook",
    "Hook",
    "HookOutcome",
    "HookPipeline",
    # Handlers
    "PromptStageHandler",
    "InMemoryArtifactWriter",
    "default_template",
    # Events
    "WorkflowEventEmitter",
]
