"""
Prompt structures for stage handlers.

This module provides:
- PromptTemplate: Structured prompt rendering for a stage
- compute_cache_key: Content address of a rendered prompt

These are domain structures only. Actual prompt content is supplied by the
calling application (e.g. a prompts.json file), not hardcoded here.
"""

import hashlib
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from stageforge.domain.models import StageInput, Turn


@dataclass(frozen=True)
class PromptTemplate:
    """Structured prompt template for one stage."""

    role: str
    constraints: str
    task: str
    feedback_wrapper: str = (
        "PREVIOUS ATTEMPT FAILED:\n{feedback}\nInstruction: Address the failure above."
    )

    def render(self, stage_input: StageInput) -> str:
        """Render prompt for a stage attempt."""
        parts = [
            f"# ROLE\n{self.role}",
            f"# CONSTRAINTS\n{self.constraints}",
            f"# PROJECT\n{stage_input.project_ref}",
        ]

        if stage_input.prior_artifacts:
            lines = []
            for stage_id, artifacts in stage_input.prior_artifacts.items():
                for name, ref in artifacts.items():
                    lines.append(f"- {stage_id}/{name}: {ref}")
            parts.append("# PRIOR ARTIFACTS\n" + "\n".join(lines))

        if stage_input.previous_errors:
            parts.append("# HISTORY")
            for i, feedback in enumerate(stage_input.previous_errors):
                wrapped = self.feedback_wrapper.format(feedback=feedback)
                parts.append(f"--- Attempt {i + 1} ---\n{wrapped}")

        parts.append(f"# TASK\n{self.task}")
        return "\n\n".join(parts)


def compute_cache_key(
    history: Sequence[Turn],
    rendered_prompt: str,
    model: str,
    params: Mapping[str, Any],
) -> str:
    """Content address of a prompt in its conversation.

    Produces a deterministic hash by:
    1. Canonical JSON serialization (sorted keys, no whitespace)
    2. SHA-256 hash of the canonical form

    Args:
        history: Context window turns sent before the prompt
        rendered_prompt: The fully rendered prompt
        model: Model identifier
        params: Sampling parameters

    Returns:
        Hex-encoded SHA-256 hash string.
    """
    payload = {
        "messages": [[t.role, t.content] for t in history]
        + [["user", rendered_prompt]],
        "model": model,
        "params": dict(params),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
