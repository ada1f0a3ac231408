"""stageforge JSON Schema definitions and validation utilities.

Schemas:
    - engine.schema.json: Engine configuration (providers, stages, runtime)
    - prompts.schema.json: Prompt templates for the prompt stage handler

Usage:
    from stageforge.schemas import validate_engine_config

    with open("stageforge.json") as f:
        data = json.load(f)
    validate_engine_config(data)  # Raises jsonschema.ValidationError if invalid
"""

import json
from importlib.resources import files
from typing import Any

import jsonschema


def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema from the schemas package.

    Args:
        name: Schema filename (e.g., 'engine.schema.json')

    Returns:
        Parsed JSON schema as a dictionary
    """
    schema_text = files("stageforge.schemas").joinpath(name).read_text()
    result: dict[str, Any] = json.loads(schema_text)
    return result


def get_engine_schema() -> dict[str, Any]:
    """Get the engine configuration schema."""
    return _load_schema("engine.schema.json")


def get_prompts_schema() -> dict[str, Any]:
    """Get the prompts.json schema."""
    return _load_schema("prompts.schema.json")


def validate_engine_config(data: dict[str, Any]) -> None:
    """Validate an engine configuration against the schema.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_engine_schema())


def validate_prompts(data: dict[str, Any]) -> None:
    """Validate prompt templates against the schema.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_prompts_schema())


__all__ = [
    "get_engine_schema",
    "get_prompts_schema",
    "validate_engine_config",
    "validate_prompts",
]
