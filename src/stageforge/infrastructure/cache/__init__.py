"""
Prompt cache adapters.
"""

from stageforge.infrastructure.cache.prompt_cache import CacheStats, InMemoryPromptCache

__all__ = [
    "CacheStats",
    "InMemoryPromptCache",
]
