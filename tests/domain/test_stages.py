"""Tests for the stage registry."""

import pytest

from stageforge.domain.models import RetryPolicy, StageDefinition
from stageforge.domain.stages import (
    DEFAULT_LIFECYCLE,
    StageRegistry,
    stage_from_dict,
)


class TestDefaultLifecycle:
    """Tests for the built-in 12-stage lifecycle."""

    def test_twelve_stages_in_order(self):
        registry = StageRegistry.default()
        assert len(registry) == 12
        assert registry.stage_ids[0] == "ideation"
        assert registry.stage_ids[-1] == "retrospective"
        assert [s.order for s in registry] == list(range(1, 13))

    def test_capabilities_match_lifecycle_table(self):
        registry = StageRegistry.default()
        for stage_id, _, capabilities in DEFAULT_LIFECYCLE:
            assert registry.get(stage_id).required_capabilities == capabilities

    def test_shared_retry_policy(self):
        policy = RetryPolicy(max_attempts=5)
        registry = StageRegistry.default(policy)
        assert all(s.retry_policy == policy for s in registry)


class TestStageRegistryValidation:
    """Tests for registry construction rules."""

    def test_empty_rejected(self):
        with pytest.raises(ValueError, match="at least one"):
            StageRegistry([])

    def test_gap_in_orders_rejected(self):
        with pytest.raises(ValueError, match="contiguous"):
            StageRegistry([StageDefinition("a", 1), StageDefinition("b", 3)])

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            StageRegistry([StageDefinition("a", 1), StageDefinition("a", 2)])

    def test_sorted_by_order(self):
        registry = StageRegistry([StageDefinition("b", 2), StageDefinition("a", 1)])
        assert registry.stage_ids == ("a", "b")


class TestStageRegistryLookup:
    """Tests for stage lookup."""

    def test_by_order(self, three_stages):
        assert three_stages.by_order(2).stage_id == "review"

    def test_by_order_out_of_range(self, three_stages):
        with pytest.raises(KeyError):
            three_stages.by_order(4)

    def test_get_unknown_lists_available(self, three_stages):
        with pytest.raises(KeyError, match="draft, review, publish"):
            three_stages.get("deploy")

    def test_is_last(self, three_stages):
        assert three_stages.is_last(three_stages.get("publish"))
        assert not three_stages.is_last(three_stages.get("draft"))

    def test_contains(self, three_stages):
        assert "review" in three_stages
        assert "deploy" not in three_stages


class TestOverrides:
    """Tests for per-stage overrides."""

    def test_override_timeout_and_retry(self, three_stages):
        updated = three_stages.with_overrides(
            {"review": {"timeout": 30.0, "retry_policy": {"max_attempts": 7}}}
        )
        review = updated.get("review")
        assert review.timeout == 30.0
        assert review.retry_policy.max_attempts == 7
        # Original untouched
        assert three_stages.get("review").timeout == 5.0

    def test_override_capabilities_become_frozenset(self, three_stages):
        updated = three_stages.with_overrides(
            {"draft": {"required_capabilities": ["code", "text"]}}
        )
        assert updated.get("draft").required_capabilities == frozenset({"code", "text"})

    def test_override_unknown_stage(self, three_stages):
        with pytest.raises(KeyError):
            three_stages.with_overrides({"deploy": {"timeout": 1.0}})

    def test_override_unknown_field(self, three_stages):
        with pytest.raises(TypeError):
            three_stages.with_overrides({"draft": {"colour": "red"}})


class TestStageFromDict:
    """Tests for JSON stage definitions."""

    def test_full_definition(self):
        stage = stage_from_dict(
            {
                "stage_id": "draft",
                "order": 1,
                "required_capabilities": ["text"],
                "retry_policy": {"max_attempts": 2, "base_delay": 0.5},
            }
        )
        assert stage.required_capabilities == frozenset({"text"})
        assert stage.retry_policy == RetryPolicy(max_attempts=2, base_delay=0.5)

    def test_from_dicts(self):
        registry = StageRegistry.from_dicts(
            [{"stage_id": "a", "order": 1}, {"stage_id": "b", "order": 2}]
        )
        assert registry.stage_ids == ("a", "b")
