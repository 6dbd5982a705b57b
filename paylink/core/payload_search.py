"""
Bounded search over untrusted webhook payloads.

Provider notifications wrap the interesting object in a varying number of
envelopes ({"data": {"order": {...}}}, {"object": ...}, lists of charges).
`walk_payload` yields every mapping reachable from the root through the
container allow-list only, breadth-first, so shallower matches win.

Guarantees:
  - depth is capped at MAX_DEPTH levels below the root
  - each container object is visited once (safe on cyclic input)
  - keys outside CONTAINER_KEYS are never descended into
"""

from collections import deque
from typing import Any, Iterable, Iterator, Mapping

MAX_DEPTH = 6

CONTAINER_KEYS = ("data", "order", "checkout", "object", "attributes")


def walk_payload(payload: Any, max_depth: int = MAX_DEPTH) -> Iterator[Mapping[str, Any]]:
    if not isinstance(payload, Mapping):
        return

    seen: set[int] = set()
    queue: deque[tuple[Mapping[str, Any], int]] = deque([(payload, 0)])

    while queue:
        node, depth = queue.popleft()
        if id(node) in seen:
            continue
        seen.add(id(node))
        yield node

        if depth >= max_depth:
            continue
        for key in CONTAINER_KEYS:
            child = node.get(key)
            if isinstance(child, Mapping):
                queue.append((child, depth + 1))
            elif isinstance(child, list):
                for item in child:
                    if isinstance(item, Mapping):
                        queue.append((item, depth + 1))


def first_value(nodes: Iterable[Mapping[str, Any]], keys: Iterable[str]) -> tuple[str, Any] | None:
    """First (key, value) for any of `keys`, scanning nodes in walk order."""
    keys = tuple(keys)
    for node in nodes:
        for key in keys:
            value = node.get(key)
            if value is not None and value != "":
                return key, value
    return None


def first_string(nodes: Iterable[Mapping[str, Any]], keys: Iterable[str]) -> str | None:
    keys = tuple(keys)
    for node in nodes:
        for key in keys:
            value = node.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None
