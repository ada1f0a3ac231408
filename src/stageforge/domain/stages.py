"""
Stage Registry: the ordered table of lifecycle stages.

Loaded once at startup and immutable during a run. The default table is the
12-stage product/engineering lifecycle; configuration may override per-stage
timeouts, retry policies, capabilities and context budgets.
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import replace
from typing import Any

from stageforge.domain.models import RetryPolicy, StageDefinition

# (stage_id, name, required capabilities)
DEFAULT_LIFECYCLE: tuple[tuple[str, str, frozenset[str]], ...] = (
    ("ideation", "Ideation", frozenset({"text"})),
    ("requirements", "Requirements", frozenset({"text"})),
    ("product_design", "Product Design", frozenset({"text"})),
    ("architecture", "Architecture", frozenset({"text", "reasoning"})),
    ("technical_design", "Technical Design", frozenset({"text", "reasoning"})),
    ("planning", "Planning", frozenset({"text"})),
    ("implementation", "Implementation", frozenset({"code"})),
    ("code_review", "Code Review", frozenset({"code", "review"})),
    ("testing", "Testing", frozenset({"code"})),
    ("documentation", "Documentation", frozenset({"text"})),
    ("release", "Release", frozenset({"text"})),
    ("retrospective", "Retrospective", frozenset({"text"})),
)


def retry_policy_from_dict(data: Mapping[str, Any]) -> RetryPolicy:
    """Build a RetryPolicy, rejecting unknown keys."""
    return RetryPolicy(**dict(data))


def stage_from_dict(data: Mapping[str, Any]) -> StageDefinition:
    """Build a StageDefinition from its JSON form."""
    fields = dict(data)
    if "required_capabilities" in fields:
        fields["required_capabilities"] = frozenset(fields["required_capabilities"])
    if "retry_policy" in fields:
        fields["retry_policy"] = retry_policy_from_dict(fields["retry_policy"])
    return StageDefinition(**fields)


class StageRegistry:
    """
    Ordered, immutable set of stage definitions.

    Orders must be contiguous from 1 and stage ids unique.

    Example usage:
        registry = StageRegistry.default()
        first = registry.by_order(1)
    """

    def __init__(self, stages: Iterable[StageDefinition]):
        ordered = sorted(stages, key=lambda s: s.order)
        if not ordered:
            raise ValueError("StageRegistry requires at least one stage")

        expected = list(range(1, len(ordered) + 1))
        actual = [s.order for s in ordered]
        if actual != expected:
            raise ValueError(f"Stage orders must be contiguous from 1, got {actual}")

        ids = [s.stage_id for s in ordered]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate stage ids: {ids}")

        self._stages: tuple[StageDefinition, ...] = tuple(ordered)
        self._by_id = {s.stage_id: s for s in ordered}

    @classmethod
    def default(cls, retry_policy: RetryPolicy | None = None) -> "StageRegistry":
        """The 12-stage lifecycle with uniform defaults."""
        policy = retry_policy or RetryPolicy()
        return cls(
            StageDefinition(
                stage_id=stage_id,
                order=order,
                name=name,
                required_capabilities=capabilities,
                retry_policy=policy,
            )
            for order, (stage_id, name, capabilities) in enumerate(
                DEFAULT_LIFECYCLE, start=1
            )
        )

    @classmethod
    def from_dicts(cls, data: Iterable[Mapping[str, Any]]) -> "StageRegistry":
        return cls(stage_from_dict(item) for item in data)

    def with_overrides(
        self, overrides: Mapping[str, Mapping[str, Any]]
    ) -> "StageRegistry":
        """
        Return a new registry with per-stage fields replaced.

        Args:
            overrides: stage_id -> {field: value}

        Raises:
            KeyError: If a stage id is unknown
        """
        updated = {s.stage_id: s for s in self._stages}
        for stage_id, changes in overrides.items():
            stage = self.get(stage_id)
            fields = dict(changes)
            if "required_capabilities" in fields:
                fields["required_capabilities"] = frozenset(
                    fields["required_capabilities"]
                )
            if "retry_policy" in fields:
                fields["retry_policy"] = retry_policy_from_dict(fields["retry_policy"])
            updated[stage_id] = replace(stage, **fields)
        return StageRegistry(updated.values())

    def get(self, stage_id: str) -> StageDefinition:
        if stage_id not in self._by_id:
            available = ", ".join(self._by_id) or "(none)"
            raise KeyError(f"Stage '{stage_id}' not found. Available stages: {available}")
        return self._by_id[stage_id]

    def by_order(self, order: int) -> StageDefinition:
        if not 1 <= order <= len(self._stages):
            raise KeyError(f"No stage with order {order}")
        return self._stages[order - 1]

    def is_last(self, stage: StageDefinition) -> bool:
        return stage.order == len(self._stages)

    @property
    def stage_ids(self) -> tuple[str, ...]:
        return tuple(s.stage_id for s in self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[StageDefinition]:
        return iter(self._stages)

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._by_id
