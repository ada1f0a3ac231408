"""Shared pytest fixtures for stageforge tests."""

import random
from collections.abc import Callable, Iterator

import pytest

from stageforge.application.agent_manager import AgentManager
from stageforge.application.orchestrator import Orchestrator
from stageforge.application.registry import EngineRegistry
from stageforge.domain.models import (
    RetryPolicy,
    StageDefinition,
    StageExecutionRecord,
    StageOutcome,
    VetoPolicy,
)
from stageforge.domain.stages import StageRegistry
from stageforge.infrastructure.cache.prompt_cache import InMemoryPromptCache
from stageforge.infrastructure.llm.mock import MockProvider
from stageforge.infrastructure.persistence.memory import InMemoryWorkflowStore
from stageforge.infrastructure.persistence.workflow_events import (
    InMemoryWorkflowEventStore,
)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts with no backoff delay."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0)


@pytest.fixture
def three_stages(fast_retry: RetryPolicy) -> StageRegistry:
    """A short draft -> review -> publish lifecycle."""
    return StageRegistry(
        StageDefinition(
            stage_id=stage_id,
            order=order,
            required_capabilities=frozenset({"text"}),
            timeout=5.0,
            retry_policy=fast_retry,
        )
        for order, stage_id in enumerate(("draft", "review", "publish"), start=1)
    )


@pytest.fixture
def memory_store() -> InMemoryWorkflowStore:
    return InMemoryWorkflowStore()


@pytest.fixture
def event_store() -> InMemoryWorkflowEventStore:
    return InMemoryWorkflowEventStore()


@pytest.fixture
def mock_provider() -> MockProvider:
    """Mock provider offering every default lifecycle capability."""
    return MockProvider()


@pytest.fixture
def prompt_cache() -> InMemoryPromptCache:
    return InMemoryPromptCache(poll_interval=0.01)


@pytest.fixture
def agent_manager(
    mock_provider: MockProvider, prompt_cache: InMemoryPromptCache
) -> Iterator[AgentManager]:
    manager = AgentManager(
        [mock_provider], prompt_cache, poll_interval=0.01, cancel_grace=2.0
    )
    yield manager
    manager.close()


@pytest.fixture
def make_orchestrator(
    memory_store: InMemoryWorkflowStore,
    event_store: InMemoryWorkflowEventStore,
    agent_manager: AgentManager,
) -> Iterator[Callable[..., Orchestrator]]:
    """Factory building orchestrators over the shared in-memory fixtures."""
    created: list[Orchestrator] = []

    def factory(
        registry: EngineRegistry,
        veto_policy: VetoPolicy = VetoPolicy.HALT,
        agents: AgentManager | None = None,
        **kwargs,
    ) -> Orchestrator:
        orchestrator = Orchestrator(
            registry,
            kwargs.pop("store", memory_store),
            agents or agent_manager,
            event_store=event_store,
            veto_policy=veto_policy,
            rng=random.Random(0),
            poll_interval=0.01,
            cancel_grace=2.0,
            **kwargs,
        )
        created.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in created:
        orchestrator.close()


@pytest.fixture
def make_record() -> Callable[..., StageExecutionRecord]:
    """Factory for execution records with sensible defaults."""

    def factory(
        stage_id: str,
        stage_order: int,
        attempt: int = 1,
        outcome: StageOutcome = StageOutcome.SUCCESS,
        instance_id: str = "wf-1",
        artifacts: tuple[tuple[str, str], ...] = (),
        error: str | None = None,
    ) -> StageExecutionRecord:
        return StageExecutionRecord(
            instance_id=instance_id,
            stage_id=stage_id,
            stage_order=stage_order,
            attempt=attempt,
            started_at="2025-01-01T00:00:00+00:00",
            finished_at="2025-01-01T00:00:01+00:00",
            outcome=outcome,
            artifacts=artifacts,
            error=error,
            error_kind="RuntimeError" if error else None,
        )

    return factory
