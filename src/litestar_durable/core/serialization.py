"""JSON normalization of values recorded in history.

Every payload a store keeps (instance input and result, command, result and
error payloads, activity arguments) must survive a JSON round trip. Passing
values through :func:`to_json_value` before they are recorded means the value a
workflow sees the first time a step resolves is the same value every later
replay decodes from history, whichever store is used.
"""

from __future__ import annotations

import json
from typing import Any

__all__ = ["to_json_value"]


def to_json_value(value: Any) -> Any:
    """Return a fresh copy of ``value`` as it reads back from a JSON column.

    Tuples become lists, and nothing in the result aliases ``value``.

    Args:
        value: A JSON-serializable value.

    Returns:
        The decoded JSON representation of ``value``.

    Raises:
        TypeError: If ``value`` contains objects JSON cannot encode, such as datetimes.
        ValueError: If ``value`` contains circular references.

    Example:
        >>> to_json_value({"ids": (1, 2)})
        {'ids': [1, 2]}
    """
    return json.loads(json.dumps(value))
