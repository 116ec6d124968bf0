"""JSON helpers for TEXT columns holding JSON documents.

Answers, question snapshots and quiz options are stored as JSON text.
orjson is already the response serializer, so it is used here as well.
"""

from typing import Any

import orjson


def dumps_json(value: Any) -> str:
    """Serialize to a JSON string (UUIDs and datetimes are handled by orjson)."""
    return orjson.dumps(value).decode("utf-8")


def loads_json(raw: str | bytes | None, default: Any = None) -> Any:
    """Parse a JSON string, returning ``default`` for empty values.

    Raises:
        orjson.JSONDecodeError: If the value is not valid JSON
    """
    if raw is None or raw == "":
        return default
    return orjson.loads(raw)
