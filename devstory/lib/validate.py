"""
Schema validation for devstory.

Data crossing a trust boundary (agent output, agents.yaml) is validated
against a JSON Schema shipped in devstory/schemas before it is used.
"""

import json
from pathlib import Path
from typing import Any

import jsonschema

from devstory.lib.errors import ValidationError


class SchemaValidationError(ValidationError):
    """Data did not match its JSON Schema."""

    def __init__(self, schema_name: str, message: str, path: str | None = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(
            f"[{schema_name}] {message}" + (f" at {path}" if path else ""),
            field=path,
        )


_schema_cache: dict[str, dict] = {}


def _get_schemas_dir() -> Path:
    return Path(__file__).parent.parent / "schemas"


def _load_schema(schema_name: str) -> dict:
    """Load schema by name, with caching."""
    if schema_name not in _schema_cache:
        schema_path = _get_schemas_dir() / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise SchemaValidationError(schema_name, f"Schema file not found: {schema_path}")
        _schema_cache[schema_name] = json.loads(schema_path.read_text())
    return _schema_cache[schema_name]


def validate(data: Any, schema_name: str) -> None:
    """
    Validate data against named schema.

    Raises:
        SchemaValidationError: If validation fails
    """
    schema = _load_schema(schema_name)

    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
        raise SchemaValidationError(schema_name, e.message, path) from None


def validate_file(filepath: Path, schema_name: str) -> Any:
    """
    Load a JSON file and validate it.

    Returns:
        Parsed and validated data
    """
    if not filepath.exists():
        raise SchemaValidationError(schema_name, f"File not found: {filepath}")

    try:
        data = json.loads(filepath.read_text())
    except json.JSONDecodeError as e:
        raise SchemaValidationError(schema_name, f"Invalid JSON in {filepath}: {e}") from None

    validate(data, schema_name)
    return data
