"""Tests for ProviderRegistry - entry points-based adapter discovery."""

from collections.abc import Mapping
from typing import Any

import pytest

from stageforge.domain.interfaces import ProviderInterface
from stageforge.domain.models import ProviderConfig, ProviderResponse
from stageforge.infrastructure import MockProvider, OllamaProvider, ProviderRegistry


class EchoProvider(ProviderInterface):
    def send(self, call, rendered_prompt: str, params: Mapping[str, Any]):
        return ProviderResponse(text=rendered_prompt)


@pytest.fixture(autouse=True)
def clean_registry():
    ProviderRegistry.clear()
    yield
    ProviderRegistry.clear()


class TestEntryPointsLoading:
    def test_builtins_available(self):
        available = ProviderRegistry.available()
        assert {"mock", "ollama", "huggingface"} <= set(available)
        assert available == sorted(available)

    def test_load_idempotent(self):
        ProviderRegistry._load_entry_points()
        count = len(ProviderRegistry._providers)
        ProviderRegistry._load_entry_points()
        assert len(ProviderRegistry._providers) == count

    def test_lazy_loading(self):
        assert ProviderRegistry._loaded is False
        ProviderRegistry.available()
        assert ProviderRegistry._loaded is True


class TestRegistryOperations:
    def test_get_builtin(self):
        assert ProviderRegistry.get("ollama") is OllamaProvider
        assert ProviderRegistry.get("mock") is MockProvider

    def test_get_unknown_lists_kinds(self):
        with pytest.raises(KeyError, match="Available kinds"):
            ProviderRegistry.get("gpt-nine")

    def test_register_custom(self):
        ProviderRegistry.register("echo", EchoProvider)
        provider = ProviderRegistry.create(ProviderConfig("e", "echo", "m"))
        assert isinstance(provider, EchoProvider)
        assert provider.name == "e"

    def test_clear_removes_custom(self):
        ProviderRegistry.register("echo", EchoProvider)
        ProviderRegistry.clear()
        with pytest.raises(KeyError):
            ProviderRegistry.get("echo")

    def test_create_all_keeps_order(self):
        configs = [
            ProviderConfig("a", "mock", "m"),
            ProviderConfig("b", "mock", "m"),
        ]
        assert [p.name for p in ProviderRegistry.create_all(configs)] == ["a", "b"]

    def test_create_passes_config(self):
        config = ProviderConfig(
            "scripted", "mock", "m", capabilities=frozenset({"text"})
        )
        provider = ProviderRegistry.create(config)
        assert provider.config is config
