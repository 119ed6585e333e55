"""API wire-format helpers.

Handles conversion between Python snake_case and the API's camelCase JSON.
"""

import re
from typing import Any

from pydantic import BaseModel

# Fields kept on the client only.
LOCAL_ONLY_FIELDS = frozenset({"sync_state"})


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase."""
    components = string.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


def to_snake(string: str) -> str:
    """Convert camelCase to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", string).lower()


def model_to_wire(model: BaseModel) -> dict[str, Any]:
    """Convert a pydantic model to an API request body.

    - Converts field names from snake_case to camelCase
    - Converts datetimes to ISO-8601 strings and enums to their values
    - Drops client-only bookkeeping fields
    """
    data = model.model_dump(mode="json", exclude=set(LOCAL_ONLY_FIELDS))
    return dict_to_wire(data)


def dict_to_wire(data: dict[str, Any]) -> dict[str, Any]:
    """Convert a snake_case dict (possibly nested) to camelCase."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if key in LOCAL_ONLY_FIELDS:
            continue
        camel_key = to_camel(key)
        if isinstance(value, dict):
            result[camel_key] = dict_to_wire(value)
        else:
            result[camel_key] = value
    return result


def wire_to_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Convert an API document to a snake_case dict for pydantic parsing."""
    return _convert_keys_to_snake(data)


def _convert_keys_to_snake(data: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in data.items():
        snake_key = to_snake(key)
        if isinstance(value, dict):
            result[snake_key] = _convert_keys_to_snake(value)
        else:
            result[snake_key] = value
    return result
