"""
Engine Registry: the explicitly constructed bundle of stages, handlers and hooks.
"""

from collections.abc import Mapping

from stageforge.application.hooks import HookPipeline
from stageforge.domain.interfaces import StageHandlerInterface
from stageforge.domain.stages import StageRegistry


class EngineRegistry:
    """
    Everything the orchestrator looks up by stage id.

    Example usage:
        registry = EngineRegistry(
            StageRegistry.default(),
            default_handler=PromptStageHandler(templates),
        )
    """

    def __init__(
        self,
        stages: StageRegistry,
        handlers: Mapping[str, StageHandlerInterface] | None = None,
        hooks: HookPipeline | None = None,
        default_handler: StageHandlerInterface | None = None,
    ):
        """
        Args:
            stages: The ordered lifecycle
            handlers: Handler per stage id
            hooks: Hook pipeline (empty if None)
            default_handler: Handler for stages without their own

        Raises:
            ValueError: If a handler names an unknown stage, or a stage has
                no handler and no default is given
        """
        handlers = dict(handlers or {})
        unknown = sorted(set(handlers) - set(stages.stage_ids))
        if unknown:
            raise ValueError(f"Handlers registered for unknown stages: {unknown}")
        if default_handler is None:
            missing = [s for s in stages.stage_ids if s not in handlers]
            if missing:
                raise ValueError(f"No handler for stages: {missing}")

        self._stages = stages
        self._handlers = handlers
        self._default_handler = default_handler
        self._hooks = hooks or HookPipeline()

    @property
    def stages(self) -> StageRegistry:
        return self._stages

    @property
    def hooks(self) -> HookPipeline:
        return self._hooks

    def handler_for(self, stage_id: str) -> StageHandlerInterface:
        """Handler for a stage. Raises KeyError for unknown stages."""
        self._stages.get(stage_id)
        handler = self._handlers.get(stage_id, self._default_handler)
        if handler is None:
            raise KeyError(f"No handler for stage '{stage_id}'")
        return handler
