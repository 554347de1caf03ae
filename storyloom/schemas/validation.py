"""
Schema validation utilities
"""

from typing import Any, Dict

from jsonschema import ValidationError, validate

from .snapshot import SNAPSHOT_SCHEMA


def validate_json_schema(data: Dict[str, Any], schema: Dict[str, Any]) -> bool:
    """Validate data against a JSON schema"""
    try:
        validate(instance=data, schema=schema)
        return True
    except ValidationError as e:
        raise ValueError(f"JSON schema validation failed: {e.message}") from e


def validate_snapshot(snapshot: Dict[str, Any]) -> bool:
    """Check that a snapshot carries the full story, node and choice structure"""
    return validate_json_schema(snapshot, SNAPSHOT_SCHEMA)
