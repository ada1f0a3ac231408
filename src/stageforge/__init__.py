"""
stageforge: workflow orchestration for a staged, agent-driven product lifecycle.

Advances projects through an ordered lifecycle of stages, invoking language
model agents at each stage, with hooks, bounded retries, a single-flight
prompt cache and replay-based crash recovery.

Example:
    from stageforge import (
        AgentManager, EngineRegistry, Orchestrator, PromptStageHandler, StageRegistry,
    )
    from stageforge.infrastructure import (
        InMemoryPromptCache, InMemoryWorkflowStore, MockProvider,
    )

    agents = AgentManager([MockProvider()], InMemoryPromptCache())
    registry = EngineRegistry(StageRegistry.default(), default_handler=PromptStageHandler())
    orchestrator = Orchestrator(registry, InMemoryWorkflowStore(), agents)

    instance = orchestrator.start("acme/widget")
    orchestrator.advance_stage(instance.instance_id)
"""

# Application layer (orchestration)
from stageforge.application.agent_manager import AgentManager, AgentSession
from stageforge.application.handlers import PromptStageHandler
from stageforge.application.hooks import ALL_STAGES, CallableHook, HookPipeline
from stageforge.application.orchestrator import Orchestrator
from stageforge.application.recovery import RecoveryManager, RecoveryReport
from stageforge.application.registry import EngineRegistry

# Domain exceptions
from stageforge.domain.exceptions import (
    ConfigurationError,
    HookVeto,
    InvalidTransition,
    NotFound,
    OperationCancelled,
    ProviderError,
    RateLimited,
    RequirementUnmet,
    StageforgeError,
    StorageError,
    Timeout,
    WorkflowCancelled,
)

# Domain interfaces (for type hints and custom implementations)
from stageforge.domain.interfaces import (
    HookInterface,
    ProviderInterface,
    StageHandlerInterface,
    WorkflowStoreInterface,
)
from stageforge.domain.models import (
    AdvanceResult,
    HookPhase,
    HookResult,
    ProviderConfig,
    RetryPolicy,
    StageDefinition,
    StageExecutionRecord,
    StageOutcome,
    VetoPolicy,
    WorkflowInstance,
    WorkflowSnapshot,
    WorkflowStatus,
)

# Prompts and stages (structures only - content defined by calling applications)
from stageforge.domain.prompts import PromptTemplate
from stageforge.domain.stages import StageRegistry

__version__ = "0.3.0"

__all__ = [
    # Version
    "__version__",
    # Application
    "Orchestrator",
    "EngineRegistry",
    "AgentManager",
    "AgentSession",
    "HookPipeline",
    "CallableHook",
    "ALL_STAGES",
    "PromptStageHandler",
    "RecoveryManager",
    "RecoveryReport",
    # Models
    "AdvanceResult",
    "HookPhase",
    "HookResult",
    "ProviderConfig",
    "RetryPolicy",
    "StageDefinition",
    "StageExecutionRecord",
    "StageOutcome",
    "VetoPolicy",
    "WorkflowInstance",
    "WorkflowSnapshot",
    "WorkflowStatus",
    # Prompts and stages
    "PromptTemplate",
    "StageRegistry",
    # Interfaces
    "HookInterface",
    "ProviderInterface",
    "StageHandlerInterface",
    "WorkflowStoreInterface",
    # Exceptions
    "StageforgeError",
    "NotFound",
    "InvalidTransition",
    "RequirementUnmet",
    "HookVeto",
    "StorageError",
    "ConfigurationError",
    "OperationCancelled",
    "WorkflowCancelled",
    "ProviderError",
    "RateLimited",
    "Timeout",
]
