from __future__ import annotations

import itertools
from dataclasses import replace

import pytest

from nodeagent import db
from nodeagent.docker_ops import ContainerRecord, ContainerSpec
from nodeagent.errors import ContainerNameConflict
from nodeagent.settings import Settings
from nodeagent.store import KVPair

MANAGED = "com.opencopilot.managed"
SERVICE = "com.opencopilot.service-manager"


@pytest.fixture(autouse=True)
def journal(tmp_path, monkeypatch):
    """Point the event journal at an isolated sqlite file."""
    monkeypatch.setattr(db, "settings", replace(db.settings, db_path=str(tmp_path / "events.db")))
    db.init_db()
    return db


class FakeRuntime:
    """In-memory stand-in for DockerRuntime that records every call."""

    def __init__(self) -> None:
        self.containers: dict[str, ContainerRecord] = {}
        self.running_ids: set[str] = set()
        self.specs: dict[str, ContainerSpec] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail: dict[tuple[str, str], Exception] = {}  # (op, arg) -> error
        self._ids = itertools.count(1)

    def _maybe_fail(self, op: str, arg: str) -> None:
        err = self.fail.get((op, arg)) or self.fail.get((op, "*"))
        if err is not None:
            raise err

    def add(self, name: str, labels: dict[str, str], ports: dict[int, int] | None = None, image: str = "img") -> ContainerRecord:
        cid = f"c{next(self._ids):064d}"
        rec = ContainerRecord(id=cid, name=name, image=image, labels=labels, ports=ports or {})
        self.containers[cid] = rec
        self.running_ids.add(cid)
        return rec

    def add_service(self, service: str, ports: dict[int, int] | None = None) -> ContainerRecord:
        return self.add(f"{SERVICE}.{service}", {MANAGED: "", SERVICE: service}, ports)

    def list(self, labels=(), name=None, all=False):
        self.calls.append(("list", name or ""))
        self._maybe_fail("list", name or "")
        out = []
        for cid in sorted(self.containers if all else self.running_ids):
            rec = replace(self.containers[cid], status="running" if cid in self.running_ids else "created")
            if any(label not in rec.labels for label in labels):
                continue
            if name and rec.name != name:
                continue
            out.append(rec)
        return out

    def pull(self, image: str) -> None:
        self.calls.append(("pull", image))
        self._maybe_fail("pull", image)

    def create(self, spec: ContainerSpec) -> str:
        self.calls.append(("create", spec.name))
        self._maybe_fail("create", spec.name)
        if any(c.name == spec.name for c in self.containers.values()):
            raise ContainerNameConflict(f"Container name '{spec.name}' is already in use.")
        cid = f"c{next(self._ids):064d}"
        self.containers[cid] = ContainerRecord(id=cid, name=spec.name, image=spec.image, labels=dict(spec.labels))
        self.specs[cid] = spec
        return cid

    def start(self, container_id: str) -> None:
        self.calls.append(("start", container_id))
        self._maybe_fail("start", container_id)
        self.running_ids.add(container_id)

    def stop(self, container_id: str, timeout: int = 10) -> None:
        self.calls.append(("stop", container_id))
        self._maybe_fail("stop", container_id)
        # auto-remove
        self.running_ids.discard(container_id)
        self.containers.pop(container_id, None)

    def remove(self, container_id: str) -> None:
        self.calls.append(("remove", container_id))
        self._maybe_fail("remove", container_id)
        self.running_ids.discard(container_id)
        self.containers.pop(container_id, None)

    def ops(self, op: str) -> list[str]:
        return [arg for o, arg in self.calls if o == op]


class FakeStore:
    """In-memory KV tree with a Consul-style modify index."""

    def __init__(self, tree: dict[str, str | None] | None = None, index: int = 1) -> None:
        self.kv: dict[str, bytes | None] = {}
        self.index = index
        self.list_calls: list[str] = []
        self.error: Exception | None = None
        self.closed = False
        for k, v in (tree or {}).items():
            self.put(k, v, bump=False)

    def put(self, key: str, value: str | None, bump: bool = True) -> None:
        self.kv[key] = value.encode() if value is not None else None
        if bump:
            self.index += 1

    def delete_tree(self, prefix: str) -> None:
        for k in [k for k in self.kv if k.startswith(prefix)]:
            del self.kv[k]
        self.index += 1

    def _pairs(self, prefix: str) -> list[KVPair]:
        return [KVPair(key=k, value=v, modify_index=self.index) for k, v in sorted(self.kv.items()) if k.startswith(prefix)]

    def list(self, prefix: str) -> list[KVPair]:
        self.list_calls.append(prefix)
        if self.error is not None:
            raise self.error
        return self._pairs(prefix)

    def close(self) -> None:
        self.closed = True

    def list_since(self, prefix: str, wait_index: int):
        if self.error is not None:
            raise self.error
        return self._pairs(prefix), self.index


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def agent_settings(tmp_path) -> Settings:
    return Settings(instance_id="i-1", config_dir=str(tmp_path / "config"), control_host="localhost")
