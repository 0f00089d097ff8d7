"""JSON Schema validation wrapper."""

from __future__ import annotations

from dataclasses import dataclass

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError


@dataclass
class SchemaViolation:
    """Structured validation error for machine-readable error reporting.

    Attributes:
        type: Error category (missing_required, invalid_type, pattern_mismatch,
              enum_violation, additional_property, etc.)
        message: Human-readable error message.
        field: Top-level field the error concerns (the missing field for
               ``required`` errors).
        path: Dotted path to the invalid value (e.g., "labels.2").
        allowed_values: List of valid values for enum violations.
        hint: Actionable suggestion for fixing the error.
    """

    type: str
    message: str
    field: str | None = None
    path: str | None = None
    allowed_values: list[str] | None = None
    hint: str | None = None


def check_schema(schema: dict[str, object]) -> None:
    """Raise ``ValueError`` if ``schema`` is not a valid Draft 2020-12 schema."""
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        raise ValueError(f"Invalid JSON Schema: {exc.message}") from exc


def validate_payload_structured(
    schema: dict[str, object],
    payload: dict[str, object],
) -> list[SchemaViolation]:
    """Validate payload and return structured validation errors, ordered by path.

    Args:
        schema: JSON Schema to validate against.
        payload: Data to validate.

    Returns:
        List of SchemaViolation objects with detailed error information.
    """
    validator = Draft202012Validator(schema)
    errors: list[SchemaViolation] = []

    for error in sorted(validator.iter_errors(payload), key=lambda e: list(map(str, e.absolute_path))):
        path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else None
        field = str(error.absolute_path[0]) if error.absolute_path else None
        allowed_values = None
        hint = None

        if error.validator == "required":
            missing = [name for name in error.validator_value if name not in (error.instance or {})]
            field = missing[0] if missing else field
            hint = f"Add the required field '{field}'."

        elif error.validator == "type":
            hint = f"Change the value to type '{error.validator_value}'."

        elif error.validator == "enum":
            allowed_values = [str(v) for v in error.validator_value] if error.validator_value else None
            if allowed_values:
                hint = f"Use one of: {', '.join(allowed_values)}"

        elif error.validator == "pattern":
            hint = f"Value must match the pattern: {error.validator_value}"

        elif error.validator == "minLength":
            hint = f"Provide a value with at least {error.validator_value} character(s)."

        elif error.validator == "maxLength":
            hint = f"Provide a value with at most {error.validator_value} character(s)."

        elif error.validator == "additionalProperties":
            extras = sorted(
                name
                for name in (error.instance or {})
                if name not in (error.schema.get("properties") or {})
            )
            if extras:
                field = extras[0]
            hint = "Remove the unexpected property or check for typos."

        errors.append(
            SchemaViolation(
                type=_classify_error(error),
                message=error.message,
                field=field,
                path=path,
                allowed_values=allowed_values,
                hint=hint,
            )
        )

    return errors


def _classify_error(error) -> str:
    """Classify a jsonschema error into a human-readable type."""
    validator_to_type = {
        "required": "missing_required",
        "type": "invalid_type",
        "enum": "enum_violation",
        "pattern": "pattern_mismatch",
        "minLength": "min_length_violation",
        "maxLength": "max_length_violation",
        "minimum": "minimum_violation",
        "maximum": "maximum_violation",
        "additionalProperties": "additional_property",
        "format": "format_error",
        "const": "const_mismatch",
        "oneOf": "one_of_violation",
        "anyOf": "any_of_violation",
        "uniqueItems": "duplicate_items",
        "minItems": "min_items_violation",
        "maxItems": "max_items_violation",
    }
    return validator_to_type.get(error.validator, "validation_error")
