"""
Domain layer for the stage orchestration engine.

Contains core business logic with no external dependencies.
"""

from stageforge.domain.cancellation import CancellationToken
from stageforge.domain.context import HookContext, ProviderCall, StageContext
from stageforge.domain.context_window import (
    ContextWindow,
    ContextWindowPolicy,
    DropOldestPolicy,
    SummarizePolicy,
)
from stageforge.domain.exceptions import (
    ConfigurationError,
    HookVeto,
    InvalidTransition,
    NotFound,
    OperationCancelled,
    ProviderError,
    RateLimited,
    RequirementUnmet,
    RetryableError,
    StageforgeError,
    StorageError,
    Timeout,
    WorkflowCancelled,
)
from stageforge.domain.interfaces import (
    AgentSessionInterface,
    HookInterface,
    PromptCacheInterface,
    ProviderInterface,
    StageHandlerInterface,
    WorkflowEventStoreInterface,
    WorkflowStoreInterface,
)
from stageforge.domain.models import (
    AdvanceResult,
    AttemptMarker,
    DispatchResult,
    HookPhase,
    HookResult,
    Pricing,
    PromptCacheEntry,
    ProviderConfig,
    ProviderResponse,
    RetryPolicy,
    StageDefinition,
    StageExecutionRecord,
    StageInput,
    StageOutcome,
    TokenUsage,
    Turn,
    VetoPolicy,
    WorkflowInstance,
    WorkflowSnapshot,
    WorkflowStatus,
)
from stageforge.domain.prompts import PromptTemplate, compute_cache_key
from stageforge.domain.replay import ReplayedState, replay_history
from stageforge.domain.stages import StageRegistry

__all__ = [
    # Models
    "AdvanceResult",
    "AttemptMarker",
    "DispatchResult",
    "HookPhase",
    "HookResult",
    "Pricing",
    "PromptCacheEntry",
    "ProviderConfig",
    "ProviderResponse",
    "RetryPolicy",
    "StageDefinition",
    "StageExecutionRecord",
    "StageInput",
    "StageOutcome",
    "TokenUsage",
    "Turn",
    "VetoPolicy",
    "WorkflowInstance",
    "WorkflowSnapshot",
    "WorkflowStatus",
    # Contexts
    "CancellationToken",
    "HookContext",
    "ProviderCall",
    "StageContext",
    "ContextWindow",
    "ContextWindowPolicy",
    "DropOldestPolicy",
    "SummarizePolicy",
    # Stages, prompts, replay
    "StageRegistry",
    "PromptTemplate",
    "compute_cache_key",
    "ReplayedState",
    "replay_history",
    # Interfaces
    "AgentSessionInterface",
    "HookInterface",
    "PromptCacheInterface",
    "ProviderInterface",
    "StageHandlerInterface",
    "WorkflowEventStoreInterface",
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
    "RetryableError",
    "ProviderError",
    "RateLimited",
    "Timeout",
]
