"""
Composition root: wires configuration, adapters and use cases together.
"""

import logging
import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from stageforge.application import (
    AgentManager,
    EngineRegistry,
    HookPipeline,
    Orchestrator,
    PromptStageHandler,
)
from stageforge.config import EngineConfig, load_prompts
from stageforge.domain.context_window import ContextWindowPolicy
from stageforge.domain.exceptions import ConfigurationError, StorageError
from stageforge.domain.interfaces import (
    ProviderInterface,
    StageHandlerInterface,
    WorkflowEventStoreInterface,
    WorkflowStoreInterface,
)
from stageforge.infrastructure import (
    FilesystemWorkflowEventStore,
    FilesystemWorkflowStore,
    InMemoryPromptCache,
    ProviderRegistry,
)

logger = logging.getLogger(__name__)


class FilesystemArtifactWriter:
    """Writes artifact text to {base_dir}/{artifact_key}.md and returns the path."""

    def __init__(self, base_dir: str | Path):
        self._base_dir = Path(base_dir)

    def __call__(self, key: str, content: str) -> str:
        path = self._base_dir / f"{key}.md"
        temp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(content)
            temp_path.replace(path)
        except OSError as e:
            raise StorageError(f"Failed to write artifact {key}: {e}") from e
        return str(path)


@dataclass
class Engine:
    """An assembled engine and the resources it owns."""

    orchestrator: Orchestrator
    agent_manager: AgentManager
    cache: InMemoryPromptCache
    store: WorkflowStoreInterface
    event_store: WorkflowEventStoreInterface | None = None

    def close(self) -> None:
        self.orchestrator.close()
        self.agent_manager.close()

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def build_providers(config: EngineConfig) -> list[ProviderInterface]:
    """
    Instantiate the configured provider adapters.

    Raises:
        ConfigurationError: Unknown kind or options the adapter rejects
    """
    providers = []
    for provider_config in config.providers:
        try:
            providers.append(ProviderRegistry.create(provider_config))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Provider '{provider_config.name}': {e}"
            ) from e
    return providers


def build_engine(
    config: EngineConfig,
    store: WorkflowStoreInterface | None = None,
    event_store: WorkflowEventStoreInterface | None = None,
    providers: Sequence[ProviderInterface] | None = None,
    handlers: Mapping[str, StageHandlerInterface] | None = None,
    hooks: HookPipeline | None = None,
    default_handler: StageHandlerInterface | None = None,
    window_policy: ContextWindowPolicy | None = None,
    rng: random.Random | None = None,
) -> Engine:
    """
    Assemble an engine from configuration.

    Anything passed explicitly replaces what the configuration would build:
    by default the filesystem store and event trail live under
    config.store_dir, and stages without a handler use PromptStageHandler
    with the configured prompts.
    """
    if store is None:
        store = FilesystemWorkflowStore(config.store_dir)
        if event_store is None:
            event_store = FilesystemWorkflowEventStore(config.store_dir)

    if providers is None:
        providers = build_providers(config)

    if default_handler is None:
        missing = [s for s in config.stages.stage_ids if s not in (handlers or {})]
        if missing:
            prompts = load_prompts(config.prompts_path) if config.prompts_path else {}
            default_handler = PromptStageHandler(
                prompts, writer=FilesystemArtifactWriter(config.store_dir / "artifacts")
            )

    cache = InMemoryPromptCache(capacity=config.cache_capacity, ttl=config.cache_ttl)
    agent_manager = AgentManager(
        providers, cache, window_policy, max_workers=max(4, config.max_workers * 2)
    )
    registry = EngineRegistry(config.stages, handlers, hooks, default_handler)
    orchestrator = Orchestrator(
        registry,
        store,
        agent_manager,
        event_store=event_store,
        veto_policy=config.veto_policy,
        rng=rng,
        max_workers=config.max_workers,
    )
    logger.debug(
        "Engine assembled: %d providers, %d stages, veto policy %s",
        len(providers),
        len(config.stages),
        config.veto_policy.value,
    )
    return Engine(
        orchestrator=orchestrator,
        agent_manager=agent_manager,
        cache=cache,
        store=store,
        event_store=event_store,
    )
