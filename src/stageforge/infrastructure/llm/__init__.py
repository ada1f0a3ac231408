"""
Provider adapters for language-model backends.
"""

from stageforge.infrastructure.llm.huggingface import (
    HuggingFaceProvider,
    HuggingFaceProviderOptions,
)
from stageforge.infrastructure.llm.mock import MockProvider
from stageforge.infrastructure.llm.ollama import OllamaProvider, OllamaProviderOptions

__all__ = [
    "MockProvider",
    "OllamaProvider",
    "OllamaProviderOptions",
    "HuggingFaceProvider",
    "HuggingFaceProviderOptions",
]
