"""Configuration loading for the engine and its prompt templates."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema

from stageforge.domain.exceptions import ConfigurationError
from stageforge.domain.models import Pricing, ProviderConfig, VetoPolicy
from stageforge.domain.prompts import PromptTemplate
from stageforge.domain.stages import StageRegistry, retry_policy_from_dict
from stageforge.schemas import validate_engine_config, validate_prompts

DEFAULT_STORE_DIR = ".stageforge"


@dataclass(frozen=True)
class EngineConfig:
    """Everything needed to assemble an engine.

    Attributes:
        providers: Configured backends, in preference order
        stages: The lifecycle, with overrides applied
        veto_policy: How mandatory-hook vetoes are handled
        cache_capacity: Prompt cache entry bound
        cache_ttl: Prompt cache entry lifetime in seconds (None for no expiry)
        store_dir: Filesystem store location
        prompts_path: Optional prompts.json
        max_workers: Threads for stage handlers and provider calls
    """

    providers: tuple[ProviderConfig, ...]
    stages: StageRegistry = field(default_factory=StageRegistry.default)
    veto_policy: VetoPolicy = VetoPolicy.HALT
    cache_capacity: int = 1024
    cache_ttl: float | None = 3600.0
    store_dir: Path = Path(DEFAULT_STORE_DIR)
    prompts_path: Path | None = None
    max_workers: int = 4


def _read_json(path: Path, what: str) -> Any:
    if not path.exists():
        raise ConfigurationError(f"{what} file not found: {path}")
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e


def provider_from_dict(data: dict[str, Any]) -> ProviderConfig:
    """Build a ProviderConfig from its JSON form."""
    pricing = data.get("pricing") or {}
    return ProviderConfig(
        name=data["name"],
        kind=data["kind"],
        model=data["model"],
        rate_limit=data.get("rate_limit"),
        capabilities=frozenset(data.get("capabilities", ())),
        pricing=Pricing(
            prompt_per_1k=pricing.get("prompt_per_1k", 0.0),
            completion_per_1k=pricing.get("completion_per_1k", 0.0),
        ),
        timeout=data.get("timeout", 120.0),
        options=dict(data.get("options", {})),
    )


def engine_config_from_dict(
    data: dict[str, Any], base_dir: Path | None = None
) -> EngineConfig:
    """
    Validate and convert a configuration dictionary.

    Args:
        data: Parsed configuration
        base_dir: Directory relative paths are resolved against

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    try:
        validate_engine_config(data)
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "(root)"
        raise ConfigurationError(f"Invalid configuration at {location}: {e.message}") from e

    base_dir = base_dir or Path.cwd()
    providers = tuple(provider_from_dict(p) for p in data["providers"])
    names = [p.name for p in providers]
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Duplicate provider names: {names}")

    try:
        if "stages" in data:
            stages = StageRegistry.from_dicts(data["stages"])
        else:
            policy = (
                retry_policy_from_dict(data["retry_policy"])
                if "retry_policy" in data
                else None
            )
            stages = StageRegistry.default(policy)
        stages = stages.with_overrides(data.get("stage_overrides", {}))
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"Invalid stage configuration: {e}") from e

    cache = data.get("cache", {})
    prompts = data.get("prompts")
    return EngineConfig(
        providers=providers,
        stages=stages,
        veto_policy=VetoPolicy(data.get("veto_policy", VetoPolicy.HALT.value)),
        cache_capacity=cache.get("capacity", 1024),
        cache_ttl=cache.get("ttl", 3600.0),
        store_dir=base_dir / data.get("store_dir", DEFAULT_STORE_DIR),
        prompts_path=base_dir / prompts if prompts else None,
        max_workers=data.get("max_workers", 4),
    )


def load_engine_config(path: Path) -> EngineConfig:
    """
    Load engine configuration from a JSON file.

    Relative paths inside the file are resolved against its directory.

    Raises:
        ConfigurationError: If file is missing or invalid
    """
    path = Path(path)
    data = _read_json(path, "Configuration")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected dict in {path}, got {type(data).__name__}")
    return engine_config_from_dict(data, base_dir=path.parent)


def load_prompts(path: Path) -> dict[str, PromptTemplate]:
    """
    Load prompt templates from JSON file.

    Args:
        path: Path to prompts.json

    Returns:
        Dict mapping stage ID to PromptTemplate

    Raises:
        ConfigurationError: If file is missing or invalid
    """
    path = Path(path)
    data = _read_json(path, "Prompts")
    try:
        validate_prompts(data)
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "(root)"
        raise ConfigurationError(f"{path.name}: invalid prompt at {location}: {e.message}") from e

    prompts = {}
    for stage_id, prompt_data in data.items():
        extra = {}
        if "feedback_wrapper" in prompt_data:
            extra["feedback_wrapper"] = prompt_data["feedback_wrapper"]
        prompts[stage_id] = PromptTemplate(
            role=prompt_data["role"],
            constraints=prompt_data.get("constraints", ""),  # Optional
            task=prompt_data["task"],
            **extra,
        )
    return prompts
