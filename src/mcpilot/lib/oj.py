"""Thin orjson wrapper used for every JSON boundary in mcpilot."""

from typing import Any

import orjson

JSONDecodeError = orjson.JSONDecodeError


def loads(data: str | bytes | bytearray | memoryview) -> Any:
    """Parse JSON text or bytes."""
    return orjson.loads(data)


def dumps(obj: Any, *, indent: bool = False) -> str:
    """Serialize to a JSON string.

    Args:
        obj: Value to serialize.
        indent: Pretty-print with two-space indentation.
    """
    option = orjson.OPT_NON_STR_KEYS
    if indent:
        option |= orjson.OPT_INDENT_2
    return orjson.dumps(obj, option=option).decode("utf-8")


def dumpb(obj: Any) -> bytes:
    """Serialize to compact JSON bytes."""
    return orjson.dumps(obj, option=orjson.OPT_NON_STR_KEYS)
