"""Schema validation for trigger payloads.

A workflow definition may declare the payload it expects:

    {"required": ["user"],
     "properties": {"user": {"type": "object"}, "score": {"type": "number"}}}

Payloads are checked against it before a run is created.
"""

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from core.exceptions import ValidationError

logger = logging.getLogger(__name__)

PayloadType = Literal["string", "number", "integer", "boolean", "object", "array"]


class PropertySpec(BaseModel):
    """Expected JSON type of one payload field."""
    type: PayloadType


class PayloadSchema(BaseModel):
    """Validated payload schema of a workflow definition."""
    required: List[str] = Field(default_factory=list)
    properties: Dict[str, PropertySpec] = Field(default_factory=dict)

    @model_validator(mode="after")
    def required_are_strings(self):
        for name in self.required:
            if not name:
                raise ValueError("required field names must be non-empty")
        return self


def _matches(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "object":
        return isinstance(value, dict)
    if expected == "array":
        return isinstance(value, list)
    return False


def parse_payload_schema(schema: Optional[Dict[str, Any]]) -> Optional[PayloadSchema]:
    """Parse a stored schema; raise ValidationError if it is malformed."""
    if schema is None:
        return None
    try:
        return PayloadSchema.model_validate(schema)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid payload schema: {e.errors()[0]['msg']}") from e


def validate_payload(schema: Optional[Dict[str, Any]], payload: Any) -> List[str]:
    """Return every problem with ``payload``; an empty list means valid."""
    if not isinstance(payload, dict):
        return ["payload must be a JSON object"]

    parsed = parse_payload_schema(schema)
    if parsed is None:
        return []

    errors = []
    for name in parsed.required:
        if name not in payload:
            errors.append(f"missing required field '{name}'")
    for name, spec in parsed.properties.items():
        if name in payload and payload[name] is not None and not _matches(payload[name], spec.type):
            errors.append(f"field '{name}' must be of type {spec.type}")

    if errors:
        logger.info(f"Payload rejected: {len(errors)} schema errors")
    return errors


def ensure_payload_valid(schema: Optional[Dict[str, Any]], payload: Any) -> None:
    errors = validate_payload(schema, payload)
    if errors:
        raise ValidationError("Invalid trigger payload: " + "; ".join(errors))
