"""
JSON Schema validation of upstream payloads.

All errors are collected rather than failing on the first one, so a bad
export can be reported in a single log line.
"""

from typing import Any

import jsonschema


def validate_against_schema(data: Any, schema: dict[str, Any]) -> list[str]:
    """
    Validate a value against a JSON schema.
    Returns a list of error messages (empty list = valid).
    """
    validator = jsonschema.Draft7Validator(schema)
    return [error.message for error in validator.iter_errors(data)]


def validate_rows(rows: list[Any], schema: dict[str, Any]) -> dict[int, list[str]]:
    """Validate each row of a list; returns errors keyed by row index, valid rows omitted."""
    errors = {}
    for index, row in enumerate(rows):
        row_errors = validate_against_schema(row, schema)
        if row_errors:
            errors[index] = row_errors
    return errors
