"""
Built-in stage handler that renders a prompt and asks the agent for output.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from stageforge.domain.context import StageContext
from stageforge.domain.interfaces import StageHandlerInterface
from stageforge.domain.models import StageDefinition, StageInput
from stageforge.domain.prompts import PromptTemplate

logger = logging.getLogger(__name__)

ArtifactWriter = Callable[[str, str], str]


class InMemoryArtifactWriter:
    """Keeps artifact text in a dict keyed by artifact key."""

    def __init__(self) -> None:
        self.contents: dict[str, str] = {}
        self._lock = threading.Lock()

    def __call__(self, key: str, content: str) -> str:
        with self._lock:
            self.contents[key] = content
        return key


def default_template(stage: StageDefinition) -> PromptTemplate:
    """Template used for stages without a configured prompt."""
    title = stage.name or stage.stage_id.replace("_", " ").title()
    return PromptTemplate(
        role=f"You are the agent responsible for the {title} stage.",
        constraints="Build on the prior artifacts. Be concise and concrete.",
        task=stage.description or f"Produce the {title} deliverable for the project.",
    )


class PromptStageHandler(StageHandlerInterface):
    """
    Renders the stage's PromptTemplate and stores the agent's reply.

    The reply is written through the artifact writer under
    context.artifact_key("output"), so re-running an attempt overwrites
    rather than duplicates.
    """

    def __init__(
        self,
        templates: Mapping[str, PromptTemplate] | None = None,
        writer: ArtifactWriter | None = None,
        params: Mapping[str, Any] | None = None,
    ):
        self._templates = dict(templates or {})
        self._writer = writer or InMemoryArtifactWriter()
        self._params = dict(params or {})

    def execute(
        self, context: StageContext, stage_input: StageInput
    ) -> Mapping[str, str]:
        template = self._templates.get(context.stage.stage_id) or default_template(
            context.stage
        )
        prompt = template.render(stage_input)

        context.checkpoint()
        result = context.agent.dispatch(prompt, self._params)
        context.checkpoint()

        if not result.text.strip():
            raise ValueError(f"Empty response for stage '{context.stage.stage_id}'")

        reference = self._writer(context.artifact_key("output"), result.text)
        logger.debug(
            "[%s] Stage '%s' attempt %d wrote %s (cached=%s)",
            context.instance_id,
            context.stage.stage_id,
            context.attempt,
            reference,
            result.cached,
        )
        return {"output": reference}
