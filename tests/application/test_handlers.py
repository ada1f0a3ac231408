"""Tests for the built-in prompt stage handler."""

import pytest

from stageforge.application.handlers import (
    InMemoryArtifactWriter,
    PromptStageHandler,
    default_template,
)
from stageforge.domain.cancellation import CancellationToken
from stageforge.domain.context import StageContext
from stageforge.domain.exceptions import OperationCancelled
from stageforge.domain.interfaces import AgentSessionInterface
from stageforge.domain.models import DispatchResult, StageDefinition, StageInput
from stageforge.domain.prompts import PromptTemplate


class FakeSession(AgentSessionInterface):
    session_id = "s-1"

    def __init__(self, reply: str = "the deliverable") -> None:
        self.reply = reply
        self.prompts = []
        self.params = []

    def dispatch(self, rendered_prompt, params=None):
        self.prompts.append(rendered_prompt)
        self.params.append(params)
        return DispatchResult(text=self.reply)


STAGE = StageDefinition("product_design", 3, name="Product Design")


def _context(session, token=None, attempt=1) -> StageContext:
    return StageContext(
        instance_id="wf-1",
        stage=STAGE,
        attempt=attempt,
        cancel_token=token or CancellationToken(),
        agent=session,
    )


def _input(attempt=1) -> StageInput:
    return StageInput(
        instance_id="wf-1", project_ref="acme/widget", stage=STAGE, attempt=attempt
    )


class TestDefaultTemplate:
    def test_uses_stage_name(self):
        template = default_template(STAGE)
        assert "Product Design" in template.role

    def test_falls_back_to_stage_id(self):
        template = default_template(StageDefinition("code_review", 8))
        assert "Code Review" in template.task


class TestPromptStageHandler:
    def test_writes_reply_under_artifact_key(self):
        writer = InMemoryArtifactWriter()
        session = FakeSession()
        handler = PromptStageHandler(writer=writer, params={"temperature": 0.1})

        artifacts = handler.execute(_context(session, attempt=2), _input(2))

        assert artifacts == {"output": "wf-1/product_design/2/output"}
        assert writer.contents["wf-1/product_design/2/output"] == "the deliverable"
        assert session.params == [{"temperature": 0.1}]

    def test_configured_template(self):
        session = FakeSession()
        templates = {
            "product_design": PromptTemplate(
                role="Designer", constraints="One page", task="Sketch the UX"
            )
        }
        PromptStageHandler(templates).execute(_context(session), _input())
        assert "# TASK\nSketch the UX" in session.prompts[0]

    def test_re_invocation_overwrites(self):
        writer = InMemoryArtifactWriter()
        handler = PromptStageHandler(writer=writer)
        handler.execute(_context(FakeSession("first")), _input())
        handler.execute(_context(FakeSession("second")), _input())
        assert writer.contents == {"wf-1/product_design/1/output": "second"}

    def test_empty_reply_fails(self):
        with pytest.raises(ValueError, match="Empty response"):
            PromptStageHandler().execute(_context(FakeSession("  ")), _input())

    def test_cancelled_before_dispatch(self):
        token = CancellationToken()
        token.cancel()
        session = FakeSession()
        with pytest.raises(OperationCancelled):
            PromptStageHandler().execute(_context(session, token), _input())
        assert session.prompts == []
