"""
Hook Pipeline: ordered pre/post handlers around each stage transition.

Hooks registered for ALL_STAGES run before stage-specific hooks; within
each group, registration order is preserved. Execution is sequential and
stops at the first failing mandatory hook.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from stageforge.domain.cancellation import CancellationToken
from stageforge.domain.context import HookContext
from stageforge.domain.exceptions import OperationCancelled
from stageforge.domain.interfaces import HookInterface
from stageforge.domain.models import HookPhase, HookResult

logger = logging.getLogger(__name__)

ALL_STAGES = "*"


@dataclass(frozen=True)
class Hook:
    """A registered hook."""

    stage_id: str  # ALL_STAGES for every stage
    phase: HookPhase
    handler: HookInterface
    must_succeed: bool = True
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", self.handler.name)


@dataclass(frozen=True)
class HookOutcome:
    """Result of running the hooks of one phase."""

    passed: bool
    hook_name: str | None = None  # The vetoing hook
    message: str = ""
    ignored_failures: tuple[str, ...] = field(default_factory=tuple)


class CallableHook(HookInterface):
    """Adapts a plain function to HookInterface.

    The function may return a HookResult or a bool.
    """

    def __init__(
        self, fn: Callable[[HookContext], HookResult | bool], name: str | None = None
    ):
        self._fn = fn
        self._name = name or getattr(fn, "__name__", "hook")

    @property
    def name(self) -> str:
        return self._name

    def run(self, context: HookContext) -> HookResult:
        result = self._fn(context)
        if isinstance(result, HookResult):
            return result
        return HookResult(passed=bool(result))


class HookPipeline:
    """Ordered hook registry and runner."""

    def __init__(self) -> None:
        self._hooks: list[Hook] = []

    def register(
        self,
        stage_id: str,
        phase: HookPhase,
        handler: HookInterface,
        must_succeed: bool = True,
        name: str | None = None,
    ) -> Hook:
        """
        Register a hook.

        Args:
            stage_id: Stage the hook applies to, or ALL_STAGES
            phase: PRE (before the handler) or POST (before commit)
            handler: The hook implementation
            must_succeed: Whether a failure vetoes the transition
            name: Display name (defaults to handler.name)

        Returns:
            The registered Hook
        """
        hook = Hook(
            stage_id=stage_id,
            phase=phase,
            handler=handler,
            must_succeed=must_succeed,
            name=name or "",
        )
        self._hooks.append(hook)
        return hook

    def hooks_for(self, stage_id: str, phase: HookPhase) -> list[Hook]:
        """Hooks to run for a stage phase, in execution order."""
        matching = [h for h in self._hooks if h.phase == phase]
        return [h for h in matching if h.stage_id == ALL_STAGES] + [
            h for h in matching if h.stage_id == stage_id
        ]

    def has_hooks(self, stage_id: str, phase: HookPhase) -> bool:
        return bool(self.hooks_for(stage_id, phase))

    def run(
        self, context: HookContext, cancel_token: CancellationToken
    ) -> HookOutcome:
        """
        Run the hooks of context.stage / context.phase sequentially.

        A hook that raises counts as failed. Cancellation is checked before
        each hook.

        Raises:
            OperationCancelled: If cancel_token fired
        """
        ignored: list[str] = []
        for hook in self.hooks_for(context.stage.stage_id, context.phase):
            cancel_token.raise_if_cancelled()
            try:
                result = hook.handler.run(context)
            except OperationCancelled:
                raise
            except Exception as e:
                result = HookResult(passed=False, message=f"{type(e).__name__}: {e}")

            if result.passed:
                continue

            if hook.must_succeed:
                logger.info(
                    "[%s] %s hook '%s' vetoed stage '%s': %s",
                    context.instance_id,
                    context.phase.value,
                    hook.name,
                    context.stage.stage_id,
                    result.message,
                )
                return HookOutcome(
                    passed=False,
                    hook_name=hook.name,
                    message=result.message,
                    ignored_failures=tuple(ignored),
                )

            logger.warning(
                "[%s] Optional %s hook '%s' failed on stage '%s': %s",
                context.instance_id,
                context.phase.value,
                hook.name,
                context.stage.stage_id,
                result.message,
            )
            ignored.append(hook.name)

        return HookOutcome(passed=True, ignored_failures=tuple(ignored))

    def __len__(self) -> int:
        return len(self._hooks)
