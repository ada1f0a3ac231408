"""
Token-bounded sliding context window for agent sessions.

Turns are appended until the budget is exceeded; the window's policy then
evicts the oldest non-pinned turns. The default policy drops them;
SummarizePolicy folds them into a single pinned summary turn.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import Callable

from stageforge.domain.models import Turn


def estimate_tokens(text: str) -> int:
    """Rough token count (~4 characters per token)."""
    if not text:
        return 0
    return max(1, math.ceil(len(text) / 4))


def _drop_oldest(turns: list[Turn], budget: int) -> tuple[list[Turn], list[Turn]]:
    """Split turns into (kept, dropped) so that kept fits the budget if possible."""
    kept = list(turns)
    dropped: list[Turn] = []
    total = sum(t.tokens for t in kept)
    i = 0
    while total > budget and i < len(kept):
        if kept[i].pinned:
            i += 1
            continue
        total -= kept[i].tokens
        dropped.append(kept.pop(i))
    return kept, dropped


class ContextWindowPolicy(ABC):
    """Strategy applied when a window exceeds its token budget."""

    @abstractmethod
    def compact(self, turns: list[Turn], budget: int) -> list[Turn]:
        """Return the turns to keep, oldest first."""
        pass


class DropOldestPolicy(ContextWindowPolicy):
    """Evict the oldest non-pinned turns."""

    def compact(self, turns: list[Turn], budget: int) -> list[Turn]:
        kept, _ = _drop_oldest(turns, budget)
        return kept


class SummarizePolicy(ContextWindowPolicy):
    """Replace evicted turns by one pinned summary turn.

    The summary goes in front of the remaining unpinned turns. If it does not
    fit the budget it is discarded and the policy degrades to drop-oldest.
    """

    def __init__(
        self,
        summarizer: Callable[[list[Turn]], str],
        token_counter: Callable[[str], int] = estimate_tokens,
    ):
        self._summarizer = summarizer
        self._count = token_counter

    def compact(self, turns: list[Turn], budget: int) -> list[Turn]:
        kept, dropped = _drop_oldest(turns, budget)
        if not dropped:
            return kept

        text = self._summarizer(dropped)
        summary = Turn(role="system", content=text, tokens=self._count(text), pinned=True)
        pinned = [t for t in kept if t.pinned]
        rest = [t for t in kept if not t.pinned]
        candidate = pinned + [summary] + rest
        kept_again, _ = _drop_oldest(candidate, budget)
        if sum(t.tokens for t in kept_again) <= budget:
            return kept_again
        return kept


class ContextWindow:
    """Ordered, token-bounded sequence of turns."""

    def __init__(
        self,
        budget: int,
        policy: ContextWindowPolicy | None = None,
        token_counter: Callable[[str], int] = estimate_tokens,
    ):
        if budget <= 0:
            raise ValueError("Context budget must be positive")
        self._budget = budget
        self._policy = policy or DropOldestPolicy()
        self._count = token_counter
        self._turns: list[Turn] = []

    @property
    def budget(self) -> int:
        return self._budget

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def total_tokens(self) -> int:
        return sum(t.tokens for t in self._turns)

    def append(
        self,
        role: str,
        content: str,
        tokens: int | None = None,
        pinned: bool = False,
    ) -> Turn:
        """Append a turn and compact the window if it now exceeds its budget."""
        turn = Turn(
            role=role,
            content=content,
            tokens=self._count(content) if tokens is None else tokens,
            pinned=pinned,
        )
        self._turns.append(turn)
        if self.total_tokens > self._budget:
            self._turns = self._policy.compact(self._turns, self._budget)
        return turn

    def pin(self, content: str, role: str = "system") -> Turn:
        return self.append(role, content, pinned=True)
