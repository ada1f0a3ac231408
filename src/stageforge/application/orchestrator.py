"""
Orchestrator: drives workflow instances through the stage lifecycle.

One advance_stage call runs one stage to a committed outcome:

    load -> pre-hooks -> handler (under the stage timeout) -> post-hooks
         -> atomic commit of record + index + status

Failed attempts are retried with exponential backoff until the stage's
retry policy is exhausted. Every status write is serialised against
cancel() so that a cancelled instance is never resurrected by a commit.
"""

import concurrent.futures
import logging
import random
import threading
import time
import uuid
import weakref
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from stageforge.application.agent_manager import AgentManager
from stageforge.application.hooks import HookOutcome
from stageforge.application.recovery import RecoveryManager, RecoveryReport
from stageforge.application.registry import EngineRegistry
from stageforge.application.workflow_event_emitter import WorkflowEventEmitter
from stageforge.domain.cancellation import CancellationToken
from stageforge.domain.context import HookContext, StageContext
from stageforge.domain.exceptions import (
    HookVeto,
    InvalidTransition,
    OperationCancelled,
    StorageError,
    Timeout,
    WorkflowCancelled,
)
from stageforge.domain.interfaces import (
    StageHandlerInterface,
    WorkflowEventStoreInterface,
    WorkflowStoreInterface,
)
from stageforge.domain.models import (
    AdvanceResult,
    AttemptMarker,
    HookPhase,
    StageDefinition,
    StageExecutionRecord,
    StageInput,
    StageOutcome,
    TokenUsage,
    VetoPolicy,
    WorkflowInstance,
    WorkflowSnapshot,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class _AttemptResult:
    """What one attempt produced, before it is committed."""

    outcome: StageOutcome
    artifacts: Mapping[str, str] = field(default_factory=dict)
    error: str | None = None
    error_kind: str | None = None
    hook_name: str | None = None
    retry_after: float | None = None
    cost: float = 0.0
    usage: TokenUsage = field(default_factory=TokenUsage)


class Orchestrator:
    """
    Stage lifecycle state machine.

    PENDING -> RUNNING -> {COMPLETED | FAILED}; WAITING_ON_HOOK is entered
    while hooks run; CANCELLED is reachable from every non-terminal status.
    """

    def __init__(
        self,
        registry: EngineRegistry,
        store: WorkflowStoreInterface,
        agent_manager: AgentManager,
        event_store: WorkflowEventStoreInterface | None = None,
        veto_policy: VetoPolicy = VetoPolicy.HALT,
        rng: random.Random | None = None,
        max_workers: int = 4,
        cancel_grace: float = 5.0,
        poll_interval: float = 0.05,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        """
        Args:
            registry: Stages, handlers and hooks
            store: Durable workflow state
            agent_manager: Dispatch layer handed to handlers via sessions
            event_store: Optional observability trail
            veto_policy: Whether mandatory-hook vetoes halt or count as retries
            rng: Random source for backoff jitter
            max_workers: Threads for stage handlers and run_many
            cancel_grace: Seconds an abandoned handler gets to reach a checkpoint
            poll_interval: Seconds between cancellation checks while waiting
            id_factory: Generates instance ids
        """
        self._registry = registry
        self._store = store
        self._agents = agent_manager
        self._events = WorkflowEventEmitter(event_store)
        self._veto_policy = veto_policy
        self._rng = rng or random.Random()
        self._max_workers = max_workers
        self._cancel_grace = cancel_grace
        self._poll_interval = poll_interval
        self._new_id = id_factory
        self._recovery = RecoveryManager(store, registry.stages, self._events)

        # Entries vanish once no caller holds the lock
        self._instance_locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()
        self._state_lock = threading.Lock()
        self._tokens: dict[str, CancellationToken] = {}
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="stageforge-stage"
        )

    @property
    def registry(self) -> EngineRegistry:
        return self._registry

    @property
    def veto_policy(self) -> VetoPolicy:
        return self._veto_policy

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def start(self, project_ref: str, instance_id: str | None = None) -> WorkflowInstance:
        """
        Create a PENDING instance.

        Raises:
            StorageError: If the id is already taken or the write fails
        """
        now = _now()
        instance = WorkflowInstance(
            instance_id=instance_id or self._new_id(),
            project_ref=project_ref,
            current_stage_index=0,
            status=WorkflowStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self._store.create(instance)
        logger.info("[%s] Started workflow for %s", instance.instance_id, project_ref)
        return instance

    def get(self, instance_id: str) -> WorkflowSnapshot:
        """Instance and history. Raises NotFound."""
        return self._store.load(instance_id)

    def advance_stage(self, instance_id: str) -> AdvanceResult:
        """
        Run the next stage to a committed outcome.

        Returns:
            AdvanceResult with the last committed record (SUCCESS, or the
            FAILED record that exhausted the retry policy)

        Raises:
            NotFound: Unknown instance
            InvalidTransition: Terminal instance, attempt already in flight,
                or an interrupted attempt awaiting recovery
            RequirementUnmet: No provider offers the stage's capabilities
            HookVeto: A mandatory hook vetoed (every attempt, under RETRY)
            WorkflowCancelled: The instance was cancelled mid-attempt
            StorageError: The commit failed; nothing was recorded
        """
        lock = self._lock_for(instance_id)
        if not lock.acquire(blocking=False):
            raise InvalidTransition(instance_id, "another attempt is in flight")
        try:
            return self._advance(instance_id)
        finally:
            lock.release()

    def run(self, instance_id: str) -> WorkflowInstance:
        """Advance until the instance is terminal or a hook veto stops it."""
        instance = self._store.load(instance_id).instance
        while not instance.is_terminal:
            try:
                instance = self.advance_stage(instance_id).instance
            except HookVeto as e:
                logger.info("[%s] Run stopped by veto: %s", instance_id, e)
                return self._store.load(instance_id).instance
        return instance

    def run_many(self, instance_ids: Iterable[str]) -> dict[str, WorkflowInstance]:
        """
        Run several instances concurrently.

        Raises:
            Exception: The first error raised by any run, after all finished
        """
        ids = list(dict.fromkeys(instance_ids))
        with ThreadPoolExecutor(
            max_workers=max(1, min(self._max_workers, len(ids))),
            thread_name_prefix="stageforge-run",
        ) as executor:
            futures = {i: executor.submit(self.run, i) for i in ids}
        return {i: future.result() for i, future in futures.items()}

    def cancel(self, instance_id: str) -> WorkflowInstance:
        """
        Cancel an instance and signal its in-flight attempt.

        Raises:
            NotFound: Unknown instance
            InvalidTransition: The instance is already terminal
        """
        with self._state_lock:
            instance = self._store.load(instance_id).instance
            if instance.is_terminal:
                raise InvalidTransition(
                    instance_id, f"cannot cancel a {instance.status.value} instance"
                )
            instance = self._store.update_status(instance_id, WorkflowStatus.CANCELLED)
            token = self._tokens.get(instance_id)

        if token is not None:
            token.cancel("workflow cancelled")
        logger.info("[%s] Cancelled", instance_id)
        self._events.cancelled(instance_id)
        return instance

    def restart(self, instance_id: str) -> WorkflowInstance:
        """
        Start a new instance that resumes a FAILED one at its failed stage.

        The new instance is seeded with the parent's records of every
        committed stage; the parent itself is left untouched.

        Raises:
            NotFound: Unknown instance
            InvalidTransition: The instance is not FAILED
        """
        parent = self._store.load(instance_id)
        if parent.instance.status != WorkflowStatus.FAILED:
            raise InvalidTransition(
                instance_id,
                f"only failed instances can be restarted "
                f"(status is {parent.instance.status.value})",
            )

        new_id = self._new_id()
        committed = parent.instance.current_stage_index
        history = tuple(
            replace(r, instance_id=new_id)
            for r in parent.history
            if r.stage_order <= committed
        )
        now = _now()
        instance = WorkflowInstance(
            instance_id=new_id,
            project_ref=parent.instance.project_ref,
            current_stage_index=committed,
            status=WorkflowStatus.RUNNING if committed else WorkflowStatus.PENDING,
            created_at=now,
            updated_at=now,
            parent_instance_id=instance_id,
        )
        self._store.seed(instance, history)
        logger.info(
            "[%s] Restarted from failed instance %s at stage %d",
            new_id,
            instance_id,
            committed + 1,
        )
        return instance

    def recover(self) -> list[RecoveryReport]:
        """Recover every active instance not currently being advanced here."""
        reports = []
        for instance_id in self._store.list_active():
            lock = self._lock_for(instance_id)
            if not lock.acquire(blocking=False):
                logger.debug("[%s] Skipping recovery: attempt in flight", instance_id)
                continue
            try:
                reports.append(self._recovery.resume(instance_id))
            except StorageError as e:
                logger.error("[%s] Recovery failed: %s", instance_id, e)
                reports.append(RecoveryReport(instance_id=instance_id, error=str(e)))
            finally:
                lock.release()
        return reports

    def close(self) -> None:
        """Stop the handler threads."""
        self._pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "Orchestrator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # =========================================================================
    # STAGE EXECUTION
    # =========================================================================

    def _advance(self, instance_id: str) -> AdvanceResult:
        snapshot = self._store.load(instance_id)
        instance = snapshot.instance
        if instance.is_terminal:
            raise InvalidTransition(instance_id, f"instance is {instance.status.value}")
        if instance.in_flight is not None:
            raise InvalidTransition(
                instance_id,
                f"interrupted attempt {instance.in_flight.attempt} of stage "
                f"'{instance.in_flight.stage_id}' awaits recovery",
            )

        stage = self._registry.stages.by_order(instance.current_stage_index + 1)
        self._agents.select_provider(stage.required_capabilities, stage.stage_id)
        handler = self._registry.handler_for(stage.stage_id)

        token = CancellationToken()
        with self._state_lock:
            self._tokens[instance_id] = token
        try:
            return self._run_stage(snapshot, stage, handler, token)
        except OperationCancelled:
            if not token.cancelled:
                raise
            self._release(instance_id, WorkflowStatus.CANCELLED)
            raise WorkflowCancelled(instance_id) from None
        except WorkflowCancelled:
            self._release(instance_id, WorkflowStatus.CANCELLED)
            raise
        except StorageError:
            self._release(instance_id, WorkflowStatus.RUNNING)
            raise
        finally:
            with self._state_lock:
                if self._tokens.get(instance_id) is token:
                    del self._tokens[instance_id]

    def _run_stage(
        self,
        snapshot: WorkflowSnapshot,
        stage: StageDefinition,
        handler: StageHandlerInterface,
        token: CancellationToken,
    ) -> AdvanceResult:
        instance = snapshot.instance
        instance_id = instance.instance_id
        policy = stage.retry_policy
        prior = snapshot.artifacts_by_stage()
        errors = [r.error for r in snapshot.attempts_for(stage.stage_id) if r.error]
        first_attempt = snapshot.last_attempt_number(stage.stage_id) + 1
        records: list[StageExecutionRecord] = []

        for n in range(1, policy.max_attempts + 1):
            attempt = first_attempt + n - 1
            started_at = _now()
            self._write_status(
                instance_id,
                lambda: self._store.begin_attempt(
                    instance_id,
                    AttemptMarker(stage.stage_id, attempt, started_at),
                    WorkflowStatus.RUNNING,
                ),
            )
            self._events.attempt_start(instance_id, stage.stage_id, attempt)
            logger.info(
                "[%s] Stage '%s' attempt %d started", instance_id, stage.stage_id, attempt
            )

            stage_input = StageInput(
                instance_id=instance_id,
                project_ref=instance.project_ref,
                stage=stage,
                attempt=attempt,
                prior_artifacts=prior,
                previous_errors=tuple(errors),
            )
            result = self._run_attempt(stage_input, handler, token)

            if result.outcome == StageOutcome.VETOED:
                self._events.hook_veto(
                    instance_id, stage.stage_id, attempt, result.hook_name, result.error or ""
                )
                if self._veto_policy == VetoPolicy.HALT:
                    self._release(instance_id, WorkflowStatus.RUNNING)
                    raise HookVeto(stage.stage_id, result.hook_name or "", result.error or "")

            record = StageExecutionRecord(
                instance_id=instance_id,
                stage_id=stage.stage_id,
                stage_order=stage.order,
                attempt=attempt,
                started_at=started_at,
                finished_at=_now(),
                outcome=result.outcome,
                artifacts=tuple(result.artifacts.items()),
                error=result.error,
                error_kind=result.error_kind,
                cost=result.cost,
                token_usage=result.usage,
            )
            exhausted = n == policy.max_attempts
            updated = self._commit(record, self._status_after(stage, record, exhausted))
            records.append(record)

            if record.outcome == StageOutcome.SUCCESS:
                self._events.attempt_success(instance_id, stage.stage_id, attempt)
                logger.info(
                    "[%s] Stage '%s' committed on attempt %d (%s)",
                    instance_id,
                    stage.stage_id,
                    attempt,
                    updated.status.value,
                )
                return AdvanceResult(updated, record, tuple(records))

            if record.outcome == StageOutcome.FAILED:
                self._events.attempt_failed(
                    instance_id, stage.stage_id, attempt, record.error_kind, record.error
                )
                logger.warning(
                    "[%s] Stage '%s' attempt %d failed: %s: %s",
                    instance_id,
                    stage.stage_id,
                    attempt,
                    record.error_kind,
                    record.error,
                )

            if exhausted:
                if record.outcome == StageOutcome.VETOED:
                    raise HookVeto(stage.stage_id, result.hook_name or "", result.error or "")
                logger.error(
                    "[%s] Stage '%s' failed after %d attempts",
                    instance_id,
                    stage.stage_id,
                    n,
                )
                return AdvanceResult(updated, record, tuple(records))

            if record.error:
                errors.append(record.error)
            delay = policy.delay_for(n, self._rng)
            if result.retry_after:
                delay = max(delay, result.retry_after)
            if token.wait(delay):
                raise WorkflowCancelled(instance_id)

        raise AssertionError("retry loop exited without an outcome")  # pragma: no cover

    def _run_attempt(
        self,
        stage_input: StageInput,
        handler: StageHandlerInterface,
        token: CancellationToken,
    ) -> _AttemptResult:
        stage = stage_input.stage
        attempt_token = token.child()

        pre = self._run_hooks(stage_input, HookPhase.PRE, {}, attempt_token)
        if not pre.passed:
            return _AttemptResult(
                StageOutcome.VETOED, hook_name=pre.hook_name, error=pre.message
            )

        session = self._agents.open_session(
            stage.required_capabilities,
            stage.context_budget,
            attempt_token,
            stage.stage_id,
        )
        context = StageContext(
            instance_id=stage_input.instance_id,
            stage=stage,
            attempt=stage_input.attempt,
            cancel_token=attempt_token,
            agent=session,
        )
        failure: Exception | None = None
        artifacts: dict[str, str] = {}
        try:
            artifacts = self._run_handler(handler, context, stage_input, token)
        except OperationCancelled as e:
            if token.cancelled:
                raise
            failure = e
        except Exception as e:
            failure = e
        finally:
            cost, usage = self._agents.close_session(session.session_id)

        if failure is not None:
            return _AttemptResult(
                StageOutcome.FAILED,
                error=str(failure) or type(failure).__name__,
                error_kind=type(failure).__name__,
                retry_after=getattr(failure, "retry_after", None),
                cost=cost,
                usage=usage,
            )

        post = self._run_hooks(stage_input, HookPhase.POST, artifacts, attempt_token)
        if not post.passed:
            return _AttemptResult(
                StageOutcome.VETOED,
                hook_name=post.hook_name,
                error=post.message,
                cost=cost,
                usage=usage,
            )
        return _AttemptResult(
            StageOutcome.SUCCESS, artifacts=artifacts, cost=cost, usage=usage
        )

    def _run_handler(
        self,
        handler: StageHandlerInterface,
        context: StageContext,
        stage_input: StageInput,
        token: CancellationToken,
    ) -> dict[str, str]:
        """Run the handler on a worker thread under the stage timeout."""
        stage = context.stage
        future = self._pool.submit(handler.execute, context, stage_input)
        deadline = time.monotonic() + stage.timeout

        while True:
            done, _ = concurrent.futures.wait([future], timeout=self._poll_interval)
            if done:
                return dict(future.result())

            if token.cancelled:
                context.cancel_token.cancel(token.reason or "cancelled")
                self._abandon(future)
                raise OperationCancelled(token.reason or "cancelled")
            if time.monotonic() >= deadline:
                context.cancel_token.cancel("stage timeout")
                self._abandon(future)
                self._events.stage_timeout(
                    context.instance_id, stage.stage_id, context.attempt, stage.timeout
                )
                raise Timeout(
                    f"Stage '{stage.stage_id}' exceeded its {stage.timeout:g}s timeout",
                    stage.timeout,
                )

    def _run_hooks(
        self,
        stage_input: StageInput,
        phase: HookPhase,
        artifacts: Mapping[str, str],
        attempt_token: CancellationToken,
    ) -> HookOutcome:
        instance_id = stage_input.instance_id
        hooks = self._registry.hooks
        has_hooks = hooks.has_hooks(stage_input.stage.stage_id, phase)
        if has_hooks:
            self._set_status(instance_id, WorkflowStatus.WAITING_ON_HOOK)
        outcome = hooks.run(
            HookContext(
                instance_id=instance_id,
                project_ref=stage_input.project_ref,
                stage=stage_input.stage,
                phase=phase,
                attempt=stage_input.attempt,
                artifacts=dict(artifacts),
            ),
            attempt_token,
        )
        if has_hooks:
            self._set_status(instance_id, WorkflowStatus.RUNNING)
        return outcome

    def _status_after(
        self, stage: StageDefinition, record: StageExecutionRecord, exhausted: bool
    ) -> WorkflowStatus:
        if record.outcome == StageOutcome.SUCCESS:
            if self._registry.stages.is_last(stage):
                return WorkflowStatus.COMPLETED
            return WorkflowStatus.RUNNING
        if record.outcome == StageOutcome.FAILED and exhausted:
            return WorkflowStatus.FAILED
        return WorkflowStatus.RUNNING

    # =========================================================================
    # STATE WRITES
    # =========================================================================

    def _commit(
        self, record: StageExecutionRecord, status: WorkflowStatus
    ) -> WorkflowInstance:
        """Append the record atomically unless the instance was cancelled."""
        instance_id = record.instance_id

        def write() -> WorkflowInstance:
            try:
                return self._store.commit_advance(instance_id, record, status)
            except StorageError:
                logger.error(
                    "[%s] Commit of stage '%s' attempt %d failed",
                    instance_id,
                    record.stage_id,
                    record.attempt,
                )
                self._release(instance_id, WorkflowStatus.RUNNING, locked=True)
                raise

        return self._write_status(instance_id, write)

    def _set_status(self, instance_id: str, status: WorkflowStatus) -> None:
        self._write_status(
            instance_id, lambda: self._store.update_status(instance_id, status)
        )

    def _write_status(
        self, instance_id: str, write: Callable[[], WorkflowInstance]
    ) -> WorkflowInstance:
        """Perform a status-changing write unless cancel() got there first."""
        with self._state_lock:
            if self._store.load(instance_id).instance.status == WorkflowStatus.CANCELLED:
                raise WorkflowCancelled(instance_id)
            return write()

    def _release(
        self, instance_id: str, status: WorkflowStatus, locked: bool = False
    ) -> None:
        """Clear the in-flight marker without recording anything (best effort)."""
        if not locked:
            with self._state_lock:
                self._release(instance_id, status, locked=True)
            return
        try:
            current = self._store.load(instance_id).instance
            if current.status == WorkflowStatus.CANCELLED:
                status = WorkflowStatus.CANCELLED
            self._store.abort_attempt(instance_id, status)
        except StorageError as e:
            logger.error("[%s] Could not clear attempt marker: %s", instance_id, e)

    def _abandon(self, future: concurrent.futures.Future) -> None:
        """Give a cancelled handler a chance to reach its next checkpoint."""
        if not future.cancel():
            concurrent.futures.wait([future], timeout=self._cancel_grace)

    def _lock_for(self, instance_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._instance_locks.get(instance_id)
            if lock is None:
                lock = self._instance_locks[instance_id] = threading.Lock()
            return lock


def _now() -> str:
    return datetime.now(UTC).isoformat()
