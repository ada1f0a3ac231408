"""
Mock provider for testing without LLM.

Returns predefined responses in sequence.
"""

import threading
from collections.abc import Mapping, Sequence
from typing import Any

from stageforge.domain.context import ProviderCall
from stageforge.domain.exceptions import OperationCancelled
from stageforge.domain.interfaces import ProviderInterface
from stageforge.domain.models import ProviderConfig, ProviderResponse, TokenUsage


class MockProvider(ProviderInterface):
    """Returns predefined responses for testing.

    Items in responses may be strings (returned as text) or exceptions
    (raised). Without responses, every call echoes a numbered reply.
    """

    def __init__(
        self,
        config: ProviderConfig | None = None,
        responses: Sequence[str | BaseException] | None = None,
        usage: TokenUsage | None = None,
        delay: float = 0.0,
        gate: threading.Event | None = None,
    ):
        """
        Args:
            config: Provider configuration (a "mock" config if None)
            responses: Items to return or raise in sequence
            usage: Token usage reported for every call
            delay: Seconds each call takes; cancellation cuts it short
            gate: If set, calls block until the event is set or cancelled
        """
        config = config or ProviderConfig(
            name="mock",
            kind="mock",
            model="mock-model",
            capabilities=frozenset({"text", "reasoning", "code", "review"}),
        )
        super().__init__(config)
        options = dict(config.options)
        self._responses = list(
            responses if responses is not None else options.get("responses", [])
        )
        self._usage = usage or TokenUsage(prompt_tokens=10, completion_tokens=20)
        self._delay = delay if delay else float(options.get("delay", 0.0))
        self._gate = gate
        self._lock = threading.Lock()
        self._call_count = 0
        self._cancelled_count = 0
        self._prompts: list[str] = []

    def send(
        self,
        call: ProviderCall,
        rendered_prompt: str,
        params: Mapping[str, Any],
    ) -> ProviderResponse:
        """Return the next predefined response."""
        with self._lock:
            index = self._call_count
            self._call_count += 1
            self._prompts.append(rendered_prompt)

        if self._gate is not None:
            while not self._gate.wait(0.01):
                if call.cancel_token.cancelled:
                    self._mark_cancelled()
                    raise OperationCancelled(call.cancel_token.reason or "cancelled")

        if self._delay and call.cancel_token.wait(self._delay):
            self._mark_cancelled()
            raise OperationCancelled(call.cancel_token.reason or "cancelled")

        if not self._responses:
            text = f"mock response {index + 1}"
        elif index < len(self._responses):
            item = self._responses[index]
            if isinstance(item, BaseException):
                raise item
            text = item
        else:
            raise RuntimeError("MockProvider exhausted responses")

        return ProviderResponse(text=text, usage=self._usage, model=call.model)

    @property
    def call_count(self) -> int:
        """Number of times send() has been called."""
        return self._call_count

    @property
    def cancelled_count(self) -> int:
        """Number of calls abandoned because their token was cancelled."""
        return self._cancelled_count

    @property
    def prompts(self) -> list[str]:
        return list(self._prompts)

    def reset(self) -> None:
        """Reset the call counter to reuse responses."""
        with self._lock:
            self._call_count = 0
            self._cancelled_count = 0
            self._prompts.clear()

    def _mark_cancelled(self) -> None:
        with self._lock:
            self._cancelled_count += 1
