"""Query-string and url-encoded form decoding.

Extended mode understands bracket notation::

    user[name]=ada&user[langs][]=py&user[langs][]=js
    -> {"user": {"name": "ada", "langs": ["py", "js"]}}

Flat mode only groups repeated keys into lists.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import unquote_plus

MAX_DEPTH = 5
ARRAY_LIMIT = 20
PARAMETER_LIMIT = 1000

_KEY_PATTERN = re.compile(r"^([^\[\]]*)((?:\[[^\[\]]*\])+)(.*)$")
_SEGMENT_PATTERN = re.compile(r"\[([^\[\]]*)\]")


def parse_query(query: str, *, extended: bool = True) -> dict[str, Any]:
    """Decode ``a=1&b[c]=2`` style input into a mapping."""

    result: dict[Any, Any] = {}
    if not query:
        return result

    for part in query.split("&")[:PARAMETER_LIMIT]:
        if not part:
            continue
        raw_key, _, raw_value = part.partition("=")
        key = unquote_plus(raw_key)
        value = unquote_plus(raw_value)
        if not key:
            continue
        segments = split_key(key) if extended else [key]
        _assign(result, segments, value)

    return _finalize(result)


def split_key(key: str) -> list[str]:
    """Split ``a[b][]`` into ``["a", "b", ""]``, honouring the depth limit."""

    match = _KEY_PATTERN.match(key)
    if match is None:
        return [key]

    parent, brackets, trailing = match.groups()
    segments = _SEGMENT_PATTERN.findall(brackets)
    if not parent:
        if not segments:
            return [key]
        parent, segments = segments[0], segments[1:]
        if not parent:
            return [key]

    remainder = ""
    if len(segments) > MAX_DEPTH:
        remainder = "".join(f"[{segment}]" for segment in segments[MAX_DEPTH:])
        segments = segments[:MAX_DEPTH]
    remainder += trailing

    result = [parent, *segments]
    if remainder:
        result.append(remainder)
    return result


def _assign(target: dict[Any, Any], segments: list[str], value: str) -> None:
    node = target
    key: Any = segments[0]
    for segment in segments[1:]:
        node = _container(node, key)
        key = _child_key(node, segment)
    _set(node, key, value)


def _container(node: dict[Any, Any], key: Any) -> dict[Any, Any]:
    existing = node.get(key)
    if isinstance(existing, dict):
        return existing
    container: dict[Any, Any] = {}
    if isinstance(existing, list):
        container.update(enumerate(existing))
    elif existing is not None:
        container[0] = existing
    node[key] = container
    return container


def _child_key(container: dict[Any, Any], segment: str) -> Any:
    if segment == "":
        return _next_index(container)
    if segment.isdigit() and str(int(segment)) == segment and int(segment) <= ARRAY_LIMIT:
        return int(segment)
    return segment


def _next_index(container: dict[Any, Any]) -> int:
    indexes = [key for key in container if isinstance(key, int)]
    return max(indexes) + 1 if indexes else 0


def _set(node: dict[Any, Any], key: Any, value: str) -> None:
    if key not in node:
        node[key] = value
        return
    existing = node[key]
    if isinstance(existing, list):
        existing.append(value)
    elif isinstance(existing, dict):
        existing[_next_index(existing)] = value
    else:
        node[key] = [existing, value]


def _finalize(value: Any) -> Any:
    if isinstance(value, list):
        return list(value)
    if not isinstance(value, dict):
        return value
    items = {key: _finalize(item) for key, item in value.items()}
    if items and all(isinstance(key, int) for key in items):
        return [items[index] for index in sorted(items)]
    return {str(key): item for key, item in items.items()}
