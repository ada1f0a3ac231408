"""
Domain models for the stage orchestration engine.

Pure data structures for workflow instances, stage definitions, the
append-only execution log, and agent accounting. All models are frozen
dataclasses so that committed state can be shared across threads.
"""

import random
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# =============================================================================
# ENUMS
# =============================================================================


class WorkflowStatus(str, Enum):
    """Lifecycle status of a workflow instance."""

    PENDING = "pending"  # Created, no stage attempted yet
    RUNNING = "running"
    WAITING_ON_HOOK = "waiting_on_hook"  # Transient sub-state of RUNNING
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
)


class StageOutcome(str, Enum):
    """Outcome of a single stage attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    VETOED = "vetoed"


class HookPhase(str, Enum):
    """Phase of a stage transition a hook is attached to."""

    PRE = "pre"
    POST = "post"


class VetoPolicy(str, Enum):
    """What the orchestrator does when a mandatory hook vetoes an attempt.

    HALT: surface the veto, record nothing, leave the instance where it is.
    RETRY: record the attempt as VETOED and retry within the stage budget.
    """

    HALT = "halt"
    RETRY = "retry"


# =============================================================================
# STAGE DEFINITIONS
# =============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries with exponential backoff and jitter."""

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("delays and jitter must be non-negative")

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        backoff = min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))
        if self.jitter == 0:
            return backoff
        return backoff + (rng or random.Random()).uniform(0, self.jitter)


@dataclass(frozen=True)
class StageDefinition:
    """One of the ordered lifecycle stages."""

    stage_id: str
    order: int  # 1-based position in the lifecycle
    name: str = ""
    required_capabilities: frozenset[str] = frozenset()
    timeout: float = 600.0  # Seconds for the whole attempt
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    context_budget: int = 8000  # Token budget of the stage's agent session
    description: str = ""


# =============================================================================
# AGENT ACCOUNTING
# =============================================================================


@dataclass(frozen=True)
class Pricing:
    """Price per thousand tokens for one provider."""

    prompt_per_1k: float = 0.0
    completion_per_1k: float = 0.0


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by a provider call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def cost(self, pricing: Pricing) -> float:
        return (
            self.prompt_tokens * pricing.prompt_per_1k
            + self.completion_tokens * pricing.completion_per_1k
        ) / 1000

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


@dataclass(frozen=True)
class ProviderConfig:
    """One configured language-model backend.

    Attributes:
        name: Unique name used to select this provider
        kind: Adapter name in the provider registry (e.g. "ollama")
        model: Model identifier passed to the backend
        rate_limit: Request ceiling per minute (None for unlimited)
        capabilities: Capabilities this provider offers to stages
        pricing: Token pricing used for cost accounting
        timeout: Per-call timeout in seconds
        options: Adapter-specific settings
    """

    name: str
    kind: str
    model: str
    rate_limit: float | None = None
    capabilities: frozenset[str] = frozenset()
    pricing: Pricing = field(default_factory=Pricing)
    timeout: float = 120.0
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderResponse:
    """Text and usage returned by one upstream call."""

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""


@dataclass(frozen=True)
class Turn:
    """One entry of an agent session's context window."""

    role: str  # "system", "user" or "assistant"
    content: str
    tokens: int
    pinned: bool = False  # Pinned turns are never evicted


@dataclass(frozen=True)
class PromptCacheEntry:
    """Memoized response for a rendered prompt. Never mutated."""

    key: str
    response: ProviderResponse
    created_at: float  # Monotonic seconds
    ttl: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.ttl is not None and now - self.created_at >= self.ttl


# =============================================================================
# EXECUTION LOG
# =============================================================================


@dataclass(frozen=True)
class AttemptMarker:
    """Persisted flag for an attempt that started but has not committed."""

    stage_id: str
    attempt: int
    started_at: str


@dataclass(frozen=True)
class StageExecutionRecord:
    """One committed attempt of one stage. Append-only."""

    instance_id: str
    stage_id: str
    stage_order: int
    attempt: int  # 1-based, contiguous per (instance, stage)
    started_at: str  # ISO timestamp
    finished_at: str
    outcome: StageOutcome
    artifacts: tuple[tuple[str, str], ...] = ()  # (name, reference) pairs
    error: str | None = None
    error_kind: str | None = None  # Exception class name
    cost: float = 0.0
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    def artifact_map(self) -> dict[str, str]:
        return dict(self.artifacts)


@dataclass(frozen=True)
class WorkflowInstance:
    """One run of the lifecycle for one project."""

    instance_id: str
    project_ref: str
    current_stage_index: int  # Order of the last committed stage, 0 if none
    status: WorkflowStatus
    created_at: str
    updated_at: str
    in_flight: AttemptMarker | None = None
    parent_instance_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class WorkflowSnapshot:
    """A workflow instance together with its execution history."""

    instance: WorkflowInstance
    history: tuple[StageExecutionRecord, ...] = ()

    def attempts_for(self, stage_id: str) -> tuple[StageExecutionRecord, ...]:
        return tuple(r for r in self.history if r.stage_id == stage_id)

    def last_attempt_number(self, stage_id: str) -> int:
        attempts = self.attempts_for(stage_id)
        return attempts[-1].attempt if attempts else 0

    @property
    def checkpoint(self) -> StageExecutionRecord | None:
        """Last committed successful record."""
        for record in reversed(self.history):
            if record.outcome == StageOutcome.SUCCESS:
                return record
        return None

    def artifacts_by_stage(self) -> dict[str, dict[str, str]]:
        """Artifacts of every successfully committed stage."""
        return {
            r.stage_id: r.artifact_map()
            for r in self.history
            if r.outcome == StageOutcome.SUCCESS
        }


# =============================================================================
# HOOKS AND HANDLERS
# =============================================================================


@dataclass(frozen=True)
class HookResult:
    """Outcome of one hook invocation."""

    passed: bool
    message: str = ""


@dataclass(frozen=True)
class StageInput:
    """Input handed to a stage handler."""

    instance_id: str
    project_ref: str
    stage: StageDefinition
    attempt: int
    prior_artifacts: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    previous_errors: tuple[str, ...] = ()  # Errors of earlier attempts of this stage


@dataclass(frozen=True)
class AdvanceResult:
    """Result of one advance_stage call."""

    instance: WorkflowInstance
    record: StageExecutionRecord  # Last record committed by this call
    attempts: tuple[StageExecutionRecord, ...] = ()  # All records of this call

    @property
    def outcome(self) -> StageOutcome:
        return self.record.outcome


@dataclass(frozen=True)
class DispatchResult:
    """What a stage handler gets back from one agent dispatch."""

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    cached: bool = False  # True when no upstream call was charged
    cost: float = 0.0
