"""Tests for MockProvider."""

import threading

import pytest

from stageforge.domain.cancellation import CancellationToken
from stageforge.domain.context import ProviderCall
from stageforge.domain.exceptions import OperationCancelled, RateLimited
from stageforge.domain.models import ProviderConfig, TokenUsage
from stageforge.infrastructure.llm.mock import MockProvider


def _call(token: CancellationToken | None = None) -> ProviderCall:
    return ProviderCall(
        session_id="s-1",
        model="mock-model",
        history=(),
        timeout=5.0,
        cancel_token=token or CancellationToken(),
    )


class TestMockProviderDefaults:
    def test_default_config(self):
        provider = MockProvider()
        assert provider.name == "mock"
        assert provider.config.capabilities == frozenset(
            {"text", "reasoning", "code", "review"}
        )

    def test_numbered_replies_without_responses(self):
        provider = MockProvider()
        assert provider.send(_call(), "a", {}).text == "mock response 1"
        assert provider.send(_call(), "b", {}).text == "mock response 2"
        assert provider.prompts == ["a", "b"]
        assert provider.call_count == 2

    def test_reports_usage(self):
        provider = MockProvider(usage=TokenUsage(1, 2))
        assert provider.send(_call(), "x", {}).usage == TokenUsage(1, 2)


class TestMockProviderResponses:
    def test_sequence_then_exhausted(self):
        provider = MockProvider(responses=["one", "two"])
        assert provider.send(_call(), "p", {}).text == "one"
        assert provider.send(_call(), "p", {}).text == "two"
        with pytest.raises(RuntimeError, match="exhausted"):
            provider.send(_call(), "p", {})

    def test_exceptions_are_raised(self):
        provider = MockProvider(responses=[RateLimited("mock", 2.0), "ok"])
        with pytest.raises(RateLimited):
            provider.send(_call(), "p", {})
        assert provider.send(_call(), "p", {}).text == "ok"

    def test_responses_from_options(self):
        config = ProviderConfig(
            name="scripted", kind="mock", model="m", options={"responses": ["hi"]}
        )
        assert MockProvider(config).send(_call(), "p", {}).text == "hi"

    def test_reset(self):
        provider = MockProvider(responses=["one"])
        provider.send(_call(), "p", {})
        provider.reset()
        assert provider.call_count == 0
        assert provider.send(_call(), "p", {}).text == "one"


class TestMockProviderCancellation:
    def test_gate_releases_call(self):
        gate = threading.Event()
        provider = MockProvider(gate=gate)
        threading.Timer(0.05, gate.set).start()
        assert provider.send(_call(), "p", {}).text == "mock response 1"

    def test_cancel_while_gated(self):
        token = CancellationToken()
        provider = MockProvider(gate=threading.Event())
        threading.Timer(0.05, token.cancel, args=("stop",)).start()
        with pytest.raises(OperationCancelled, match="stop"):
            provider.send(_call(token), "p", {})
        assert provider.cancelled_count == 1

    def test_cancel_during_delay(self):
        token = CancellationToken()
        token.cancel()
        provider = MockProvider(delay=10.0)
        with pytest.raises(OperationCancelled):
            provider.send(_call(token), "p", {})
        assert provider.cancelled_count == 1
