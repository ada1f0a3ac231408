"""
Agent Manager: provider selection, sessions, caching and cost accounting.

Stage handlers talk to language models through an AgentSession. Each
dispatch goes through the prompt cache (single-flight per content hash); on
a miss the leader waits for the provider's token bucket, then calls the
adapter on a worker thread under the provider's per-call timeout.
"""

import concurrent.futures
import logging
import threading
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from stageforge.application.rate_limiter import TokenBucket
from stageforge.domain.cancellation import CancellationToken
from stageforge.domain.context import ProviderCall
from stageforge.domain.context_window import ContextWindow, ContextWindowPolicy
from stageforge.domain.exceptions import OperationCancelled, RequirementUnmet, Timeout
from stageforge.domain.interfaces import (
    AgentSessionInterface,
    PromptCacheInterface,
    ProviderInterface,
)
from stageforge.domain.models import DispatchResult, ProviderResponse, TokenUsage
from stageforge.domain.prompts import compute_cache_key

logger = logging.getLogger(__name__)


class AgentSession(AgentSessionInterface):
    """One stage attempt's conversation with a single provider."""

    def __init__(
        self,
        manager: "AgentManager",
        session_id: str,
        provider: ProviderInterface,
        context_window: ContextWindow,
        cancel_token: CancellationToken,
    ):
        self.session_id = session_id
        self.provider = provider
        self.context_window = context_window
        self.cancel_token = cancel_token
        self.cost = 0.0
        self.usage = TokenUsage()
        self.calls = 0
        self.cache_hits = 0
        self.closed = False
        self._manager = manager
        self._lock = threading.Lock()

    @property
    def provider_name(self) -> str:
        return self.provider.name

    def dispatch(
        self, rendered_prompt: str, params: Mapping[str, Any] | None = None
    ) -> DispatchResult:
        return self._manager.dispatch(self.session_id, rendered_prompt, params)

    def _record(self, prompt: str, response: ProviderResponse, hit: bool) -> float:
        """Append the exchange to the window and charge the session."""
        cost = 0.0 if hit else response.usage.cost(self.provider.config.pricing)
        with self._lock:
            self.calls += 1
            if hit:
                self.cache_hits += 1
            else:
                self.cost += cost
                self.usage = self.usage + response.usage
            self.context_window.append("user", prompt)
            self.context_window.append("assistant", response.text)
        return cost


class AgentManager:
    """
    Multi-provider dispatch layer.

    Providers are tried in configuration order; the first one offering every
    capability a stage requires serves the stage's session.
    """

    def __init__(
        self,
        providers: Sequence[ProviderInterface],
        cache: PromptCacheInterface,
        window_policy: ContextWindowPolicy | None = None,
        max_workers: int = 8,
        cancel_grace: float = 5.0,
        poll_interval: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            providers: Configured provider adapters, in preference order
            cache: Prompt cache shared by every session
            window_policy: Compaction policy for session context windows
            max_workers: Threads available for concurrent provider calls
            cancel_grace: Seconds to let an abandoned call observe cancellation
            poll_interval: Seconds between cancellation checks while waiting
            clock: Monotonic clock used for per-call deadlines
        """
        names = [p.name for p in providers]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate provider names: {duplicates}")

        self._providers: dict[str, ProviderInterface] = {p.name: p for p in providers}
        self._limiters: dict[str, TokenBucket] = {
            p.name: TokenBucket(p.config.rate_limit)
            for p in providers
            if p.config.rate_limit
        }
        self._cache = cache
        self._window_policy = window_policy
        self._cancel_grace = cancel_grace
        self._poll_interval = poll_interval
        self._clock = clock
        self._sessions: dict[str, AgentSession] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="stageforge-provider"
        )

    @property
    def providers(self) -> list[ProviderInterface]:
        return list(self._providers.values())

    def available_capabilities(self) -> frozenset[str]:
        """Union of the capabilities of every configured provider."""
        caps: set[str] = set()
        for provider in self._providers.values():
            caps |= provider.config.capabilities
        return frozenset(caps)

    def select_provider(
        self, capabilities: frozenset[str], stage_id: str = ""
    ) -> ProviderInterface:
        """
        First provider offering every required capability.

        Raises:
            RequirementUnmet: If no single provider covers the requirement
        """
        for provider in self._providers.values():
            if capabilities <= provider.config.capabilities:
                return provider

        if not self._providers:
            missing = frozenset(capabilities)
        else:
            missing = min(
                (capabilities - p.config.capabilities for p in self._providers.values()),
                key=len,
            )
        raise RequirementUnmet(stage_id, missing)

    def open_session(
        self,
        capabilities: frozenset[str] = frozenset(),
        budget: int = 8000,
        cancel_token: CancellationToken | None = None,
        stage_id: str = "",
    ) -> AgentSession:
        """Open a session on the provider selected for the capabilities."""
        provider = self.select_provider(capabilities, stage_id)
        session = AgentSession(
            manager=self,
            session_id=uuid.uuid4().hex,
            provider=provider,
            context_window=ContextWindow(budget, self._window_policy),
            cancel_token=cancel_token or CancellationToken(),
        )
        with self._lock:
            self._sessions[session.session_id] = session
        logger.debug(
            "Opened session %s on provider '%s' (budget=%d)",
            session.session_id,
            provider.name,
            budget,
        )
        return session

    def get_session(self, session_id: str) -> AgentSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown or closed session: {session_id}")
        return session

    def dispatch(
        self,
        session_id: str,
        rendered_prompt: str,
        params: Mapping[str, Any] | None = None,
    ) -> DispatchResult:
        """
        Send a prompt within a session.

        Returns:
            DispatchResult; a cache hit carries zero cost and zero usage

        Raises:
            OperationCancelled: The session's token fired
            RateLimited, ProviderError, Timeout: From the provider call
        """
        session = self.get_session(session_id)
        token = session.cancel_token
        token.raise_if_cancelled()

        params = dict(params or {})
        provider = session.provider
        history = session.context_window.turns
        key = compute_cache_key(history, rendered_prompt, provider.config.model, params)

        def compute() -> ProviderResponse:
            return self._call_provider(session, history, rendered_prompt, params)

        response, hit = self._cache.get_or_compute(key, compute, token)
        token.raise_if_cancelled()

        cost = session._record(rendered_prompt, response, hit)
        logger.debug(
            "[%s] dispatch via '%s' hit=%s cost=%.6f",
            session_id,
            provider.name,
            hit,
            cost,
        )
        return DispatchResult(
            text=response.text,
            usage=TokenUsage() if hit else response.usage,
            cached=hit,
            cost=cost,
        )

    def close_session(self, session_id: str) -> tuple[float, TokenUsage]:
        """Close a session and return its accumulated (cost, usage)."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise KeyError(f"Unknown or closed session: {session_id}")
        session.closed = True
        return session.cost, session.usage

    def close(self) -> None:
        """Stop the provider worker threads."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "AgentManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Upstream calls
    # -------------------------------------------------------------------------

    def _call_provider(
        self,
        session: AgentSession,
        history: tuple,
        rendered_prompt: str,
        params: dict[str, Any],
    ) -> ProviderResponse:
        provider = session.provider
        call_token = session.cancel_token.child()
        limiter = self._limiters.get(provider.name)
        if limiter is not None:
            waited = limiter.acquire(call_token)
            if waited:
                logger.debug("Rate limiter delayed '%s' by %.2fs", provider.name, waited)

        call_token.raise_if_cancelled()
        call = ProviderCall(
            session_id=session.session_id,
            model=provider.config.model,
            history=history,
            timeout=provider.config.timeout,
            cancel_token=call_token,
        )
        future = self._executor.submit(provider.send, call, rendered_prompt, params)
        deadline = self._clock() + call.timeout

        while True:
            done, _ = concurrent.futures.wait([future], timeout=self._poll_interval)
            if done:
                return future.result()

            if call_token.cancelled:
                self._abandon(future)
                raise OperationCancelled(call_token.reason or "cancelled")
            if self._clock() >= deadline:
                call_token.cancel("provider call timed out")
                self._abandon(future)
                raise Timeout(
                    f"Provider '{provider.name}' did not respond within "
                    f"{call.timeout:g}s",
                    call.timeout,
                )

    def _abandon(self, future: concurrent.futures.Future) -> None:
        """Give a cancelled call a chance to observe its token before moving on."""
        if not future.cancel():
            concurrent.futures.wait([future], timeout=self._cancel_grace)
