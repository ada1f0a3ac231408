"""
Infrastructure layer for the stage orchestration engine.

Contains adapters for external concerns (persistence, LLMs, caching, registry).
"""

from stageforge.infrastructure.cache import CacheStats, InMemoryPromptCache
from stageforge.infrastructure.llm import (
    HuggingFaceProvider,
    MockProvider,
    OllamaProvider,
)
from stageforge.infrastructure.persistence import (
    FilesystemWorkflowEventStore,
    FilesystemWorkflowStore,
    InMemoryWorkflowEventStore,
    InMemoryWorkflowStore,
)
from stageforge.infrastructure.registry import ProviderRegistry

__all__ = [
    # Persistence
    "InMemoryWorkflowStore",
    "FilesystemWorkflowStore",
    "InMemoryWorkflowEventStore",
    "FilesystemWorkflowEventStore",
    # Cache
    "CacheStats",
    "InMemoryPromptCache",
    # LLM
    "MockProvider",
    "OllamaProvider",
    "HuggingFaceProvider",
    # Registry
    "ProviderRegistry",
]
