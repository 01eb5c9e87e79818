"""Conversion between flat Consul KV listings and nested config documents.

Keys are ``/``-delimited paths. A key ending in ``/`` is a Consul "folder"
and becomes an empty mapping; every other key becomes a string leaf.
"""
from __future__ import annotations

from typing import Any

from .errors import DecodeError
from .store import KVPair


def services_prefix(instance_id: str) -> str:
    return f"instances/{instance_id}/services/"


def service_prefix(instance_id: str, service: str) -> str:
    return f"{services_prefix(instance_id)}{service}/"


def _child(node: dict[str, Any], part: str, key: str) -> dict[str, Any]:
    existing = node.get(part)
    if existing is None:
        existing = node[part] = {}
    elif not isinstance(existing, dict):
        raise DecodeError(f"Key '{key}' nests under a value, not a folder.")
    return existing


def decode(pairs: list[KVPair]) -> dict[str, Any]:
    doc: dict[str, Any] = {}
    for pair in pairs:
        key = pair.key.strip("/") if pair.key.endswith("/") else pair.key.lstrip("/")
        if not key:
            continue
        parts = key.split("/")
        is_folder = pair.key.endswith("/")

        node = doc
        for part in parts[:-1]:
            node = _child(node, part, pair.key)

        last = parts[-1]
        if is_folder:
            _child(node, last, pair.key)
            continue

        try:
            value = pair.value.decode("utf-8") if pair.value is not None else ""
        except UnicodeDecodeError as e:
            raise DecodeError(f"Key '{pair.key}' is not valid UTF-8.") from e
        existing = node.get(last)
        if isinstance(existing, dict):
            raise DecodeError(f"Key '{pair.key}' is both a value and a folder.")
        if existing is not None and existing != value:
            raise DecodeError(f"Key '{pair.key}' is listed twice with different values.")
        node[last] = value
    return doc


def _lookup(document: dict[str, Any], path: list[str]) -> Any:
    node: Any = document
    for i, part in enumerate(path):
        if not isinstance(node, dict):
            raise DecodeError(f"Expected a folder at '{'/'.join(path[:i])}'.")
        if part not in node:
            return None
        node = node[part]
    return node


def services_of(document: dict[str, Any], instance_id: str) -> dict[str, Any]:
    """Return ``instances.<id>.services``; an absent path means no services."""
    found = _lookup(document, ["instances", instance_id, "services"])
    if found is None:
        return {}
    if not isinstance(found, dict):
        raise DecodeError(f"instances/{instance_id}/services is a value, not a folder.")
    return found


def service_document(document: dict[str, Any], instance_id: str, service: str) -> Any:
    return services_of(document, instance_id).get(service)


def flatten(document: dict[str, Any], prefix: str = "") -> list[KVPair]:
    pairs: list[KVPair] = []
    for name, value in document.items():
        key = f"{prefix}{name}"
        if isinstance(value, dict):
            if value:
                pairs.extend(flatten(value, f"{key}/"))
            else:
                pairs.append(KVPair(key=f"{key}/"))
        else:
            pairs.append(KVPair(key=key, value=str(value).encode("utf-8")))
    return pairs
