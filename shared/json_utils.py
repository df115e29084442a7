# shared/json_utils.py
"""
JSON helpers for JSONB columns.
asyncpg hands JSONB back as text unless a codec is registered, so every
service reads those columns through these functions.
"""

import json
import logging
from typing import Any, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


def safe_json_parse(
    value: Any, default: T = None, expected_type: Optional[type] = None
) -> Union[T, dict, list, str, int, float, bool]:
    """
    Safely parse JSON with consistent error handling.

    Args:
        value: Value to parse (string, dict, list, etc.)
        default: Default value to return on parse failure
        expected_type: Expected type for validation (dict, list, etc.)

    Returns:
        Parsed value or default on failure
    """
    if expected_type and isinstance(value, expected_type):
        return value

    if not isinstance(value, str):
        return value if value is not None else default

    try:
        parsed = json.loads(value)

        if expected_type and not isinstance(parsed, expected_type):
            logger.warning(f"Parsed JSON type {type(parsed)} doesn't match expected {expected_type}")
            return default

        return parsed

    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.debug(f"JSON parse failed for value '{value[:100]}...': {e}")
        return default


def parse_jsonb_field(field_value: Any, default: Any = None, field_name: str = "unknown") -> Any:
    """Parse a JSONB column value, falling back to ``default`` (an empty dict if omitted)."""
    if default is None:
        default = {}

    if field_value is None:
        return default

    if isinstance(field_value, type(default)):
        return field_value

    parsed = safe_json_parse(field_value, default, type(default))

    if parsed == default and field_value:
        logger.warning(f"Failed to parse JSONB field '{field_name}': {field_value}")

    return parsed


def safe_json_dumps(obj: Any, default_str: str = "{}") -> str:
    """Serialize to JSON, returning ``default_str`` when the object can't be encoded."""
    try:
        return json.dumps(obj, default=str)
    except (TypeError, ValueError) as e:
        logger.warning(f"JSON serialization failed: {e}")
        return default_str
