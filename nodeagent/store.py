from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import consul
from requests.exceptions import RequestException

from .errors import StoreError


@dataclass(frozen=True)
class KVPair:
    key: str
    value: bytes | None = None
    modify_index: int = 0


def _pairs(data: Any) -> list[KVPair]:
    # The client answers a 404 (nothing under the prefix) with None.
    if data is None:
        return []
    if not isinstance(data, list):
        raise StoreError(f"Unexpected KV payload: {type(data).__name__}")
    return [
        KVPair(key=item["Key"], value=item.get("Value"), modify_index=int(item.get("ModifyIndex") or 0))
        for item in data
    ]


def _client_from_addr(addr: str, token: str | None) -> consul.Consul:
    parts = urlsplit(addr if "://" in addr else f"http://{addr}")
    return consul.Consul(
        host=parts.hostname or "127.0.0.1",
        port=parts.port or 8500,
        scheme=parts.scheme or "http",
        token=token,
    )


class ConsulKV:
    """KV reads against Consul, shared by the watch loop, configurator and API.

    ``list_since`` is a blocking query: Consul holds it until the index moves
    past ``wait_index`` or ``wait_s`` elapses.
    """

    def __init__(self, addr: str, token: str | None = None, wait_s: int = 300, client: Any = None):
        self.wait_s = max(1, int(wait_s))
        self.client = client if client is not None else _client_from_addr(addr, token)

    def close(self) -> None:
        session = getattr(getattr(self.client, "http", None), "session", None)
        if session is not None:
            session.close()

    def _get(self, prefix: str, **params: Any) -> tuple[list[KVPair], int | None]:
        try:
            index, data = self.client.kv.get(prefix, recurse=True, **params)
        except (consul.ConsulException, RequestException) as e:
            raise StoreError(f"Consul request failed: {type(e).__name__}: {e}") from e

        try:
            pairs = _pairs(data)
            return pairs, int(index) if index is not None else None
        except (ValueError, KeyError, TypeError) as e:
            raise StoreError(f"Invalid KV response: {e}") from e

    def list(self, prefix: str) -> list[KVPair]:
        pairs, _ = self._get(prefix)
        return pairs

    def list_since(self, prefix: str, wait_index: int) -> tuple[list[KVPair], int]:
        pairs, index = self._get(prefix, index=int(wait_index), wait=f"{self.wait_s}s")
        if index is None:
            raise StoreError("Consul response carries no X-Consul-Index")
        return pairs, index
