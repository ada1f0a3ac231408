"""
Domain exceptions for the stage orchestration engine.

Retryable provider-layer failures derive from RetryableError and are counted
against a stage's retry budget. Everything else is surfaced to the caller.
"""


class StageforgeError(Exception):
    """Base class for all engine errors."""


# =============================================================================
# ORCHESTRATION ERRORS (not retryable)
# =============================================================================


class NotFound(StageforgeError):
    """Raised when a workflow instance does not exist."""

    def __init__(self, instance_id: str):
        super().__init__(f"Workflow instance not found: {instance_id}")
        self.instance_id = instance_id


class InvalidTransition(StageforgeError):
    """
    Raised when a state transition is not allowed.

    Covers terminal instances, a stage already in flight, and instances
    that still carry an interrupted attempt awaiting recovery.
    """

    def __init__(self, instance_id: str, reason: str):
        super().__init__(f"Invalid transition for {instance_id}: {reason}")
        self.instance_id = instance_id
        self.reason = reason


class RequirementUnmet(StageforgeError):
    """Raised when no configured provider offers a stage's capabilities."""

    def __init__(self, stage_id: str, missing: frozenset[str]):
        super().__init__(
            f"Stage '{stage_id}' requires unavailable capabilities: "
            f"{', '.join(sorted(missing))}"
        )
        self.stage_id = stage_id
        self.missing = missing


class HookVeto(StageforgeError):
    """
    Raised when a mandatory hook refuses a stage transition.

    The stage is not committed and the instance stays at the same index.
    """

    def __init__(self, stage_id: str, hook_name: str, message: str = ""):
        detail = f": {message}" if message else ""
        super().__init__(f"Hook '{hook_name}' vetoed stage '{stage_id}'{detail}")
        self.stage_id = stage_id
        self.hook_name = hook_name
        self.message = message


class StorageError(StageforgeError):
    """Raised when the workflow store cannot persist or read state."""


class ConfigurationError(StageforgeError):
    """Raised when configuration files are invalid or missing."""


# =============================================================================
# CANCELLATION
# =============================================================================


class OperationCancelled(StageforgeError):
    """Raised at a cancellation checkpoint once a token has been cancelled."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


class WorkflowCancelled(StageforgeError):
    """Raised by advance_stage when the instance was cancelled mid-attempt."""

    def __init__(self, instance_id: str):
        super().__init__(f"Workflow instance cancelled: {instance_id}")
        self.instance_id = instance_id


# =============================================================================
# PROVIDER ERRORS (retryable)
# =============================================================================


class RetryableError(StageforgeError):
    """Base class for failures the stage retry policy may absorb."""


class ProviderError(RetryableError):
    """Raised when a language-model backend returns an error."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class RateLimited(ProviderError):
    """Raised when a provider signals throttling.

    Attributes:
        retry_after: Backoff hint in seconds from the provider, if any.
    """

    def __init__(self, provider: str, retry_after: float | None = None):
        hint = f" (retry after {retry_after:.1f}s)" if retry_after else ""
        super().__init__(provider, f"rate limited{hint}")
        self.retry_after = retry_after


class Timeout(RetryableError):
    """Raised when a provider call or a whole stage exceeds its time limit."""

    def __init__(self, message: str, seconds: float | None = None):
        super().__init__(message)
        self.seconds = seconds
