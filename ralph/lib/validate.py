"""
Schema validation for engine records.

Every record crossing a boundary (prd.json, evidence artifacts, state
files, conflict artifacts) is checked against a JSON Schema shipped in
ralph/schemas. Failures are explicit; nothing is silently coerced.
"""

import json
from pathlib import Path

import jsonschema

SCHEMA_NAMES = (
    "prd",
    "evidence",
    "workflow",
    "story_state",
    "checkpoint",
    "iteration",
    "rollback_point",
    "conflict",
)


class ValidationError(Exception):
    """Schema validation failed."""

    def __init__(self, schema_name: str, message: str, path: str | None = None):
        self.schema_name = schema_name
        self.message = message
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


_validators: dict[str, jsonschema.Draft7Validator] = {}


def _get_schemas_dir() -> Path:
    return Path(__file__).parent.parent / "schemas"


def _get_validator(schema_name: str) -> jsonschema.Draft7Validator:
    if schema_name not in _validators:
        schema_path = _get_schemas_dir() / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise ValidationError(schema_name, f"Schema file not found: {schema_path}")
        schema = json.loads(schema_path.read_text())
        _validators[schema_name] = jsonschema.Draft7Validator(schema)
    return _validators[schema_name]


def validate(data, schema_name: str) -> None:
    """
    Validate data against a named schema.

    Raises:
        ValidationError: describing the first (best-match) error
    """
    validator = _get_validator(schema_name)
    error = jsonschema.exceptions.best_match(validator.iter_errors(data))
    if error is not None:
        path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "(root)"
        raise ValidationError(schema_name, error.message, path)


def validate_file(filepath: Path, schema_name: str) -> dict:
    """
    Load a JSON file and validate it.

    Returns:
        Parsed and validated data

    Raises:
        ValidationError: if missing, not JSON, or not matching the schema
    """
    if not filepath.exists():
        raise ValidationError(schema_name, f"File not found: {filepath}")

    try:
        data = json.loads(filepath.read_text())
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(schema_name, f"Invalid JSON in {filepath}: {e}") from None

    validate(data, schema_name)
    return data


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """Refuse to write a record that does not match its schema."""
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(
            schema_name, f"Refusing to write invalid data to {filepath}: {e.message}", e.path
        ) from None
