"""
Provider Registry with Entry Points Discovery.

Maps the provider "kind" named in configuration to an adapter class. The
built-in adapters are always present; external packages can add more in
their pyproject.toml:

    [project.entry-points."stageforge.providers"]
    mykind = "mypackage.providers:MyProvider"
"""

import warnings
from collections.abc import Iterable
from importlib.metadata import entry_points

from stageforge.domain.interfaces import ProviderInterface
from stageforge.domain.models import ProviderConfig
from stageforge.infrastructure.llm import (
    HuggingFaceProvider,
    MockProvider,
    OllamaProvider,
)

ENTRY_POINT_GROUP = "stageforge.providers"

BUILTIN_PROVIDERS: dict[str, type[ProviderInterface]] = {
    "mock": MockProvider,
    "ollama": OllamaProvider,
    "huggingface": HuggingFaceProvider,
}


class ProviderRegistry:
    """
    Registry for ProviderInterface implementations.

    Uses lazy loading - entry points are only loaded on first access.

    Example usage:
        registry = ProviderRegistry()
        provider = registry.create(ProviderConfig(name="local", kind="ollama", ...))
    """

    _providers: dict[str, type[ProviderInterface]] = dict(BUILTIN_PROVIDERS)
    _loaded: bool = False

    @classmethod
    def _load_entry_points(cls) -> None:
        """Load adapters from entry points (lazy, called once)."""
        if cls._loaded:
            return

        for ep in entry_points(group=ENTRY_POINT_GROUP):
            if ep.name in cls._providers:
                continue
            try:
                cls._providers[ep.name] = ep.load()
            except Exception as e:
                warnings.warn(
                    f"Failed to load provider '{ep.name}' from entry point: {e}",
                    stacklevel=2,
                )

        cls._loaded = True

    @classmethod
    def register(cls, kind: str, provider_class: type[ProviderInterface]) -> None:
        """
        Manually register an adapter class.

        Args:
            kind: Provider kind as used in configuration (e.g., "ollama")
            provider_class: Class implementing ProviderInterface
        """
        cls._providers[kind] = provider_class

    @classmethod
    def get(cls, kind: str) -> type[ProviderInterface]:
        """
        Get an adapter class by kind.

        Raises:
            KeyError: If the kind is not registered
        """
        cls._load_entry_points()
        if kind not in cls._providers:
            available = ", ".join(sorted(cls._providers)) or "(none)"
            raise KeyError(
                f"Provider kind '{kind}' not found. Available kinds: {available}"
            )
        return cls._providers[kind]

    @classmethod
    def create(cls, config: ProviderConfig) -> ProviderInterface:
        """
        Instantiate the adapter for one configured provider.

        Raises:
            KeyError: If config.kind is not registered
            TypeError: If config.options contains fields the adapter rejects
        """
        return cls.get(config.kind)(config)

    @classmethod
    def create_all(cls, configs: Iterable[ProviderConfig]) -> list[ProviderInterface]:
        """Instantiate adapters for every configured provider, in order."""
        return [cls.create(config) for config in configs]

    @classmethod
    def available(cls) -> list[str]:
        """List registered provider kinds."""
        cls._load_entry_points()
        return sorted(cls._providers)

    @classmethod
    def clear(cls) -> None:
        """
        Reset to the built-in adapters (useful for testing).

        Also resets the loaded flag so entry points can be reloaded.
        """
        cls._providers = dict(BUILTIN_PROVIDERS)
        cls._loaded = False
