from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import docker
from docker.errors import APIError, DockerException, NotFound
from docker.utils import parse_repository_tag
from requests.exceptions import RequestException

from .errors import ContainerNameConflict, RuntimeAdapterError


SERVICE_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_\-]{0,62}$")

# docker-py does not wrap transport errors from requests.
ENGINE_ERRORS = (DockerException, RequestException)


def validate_service_name(name: str) -> None:
    # Service names end up in container names and label values.
    if not SERVICE_NAME_RE.match(name):
        raise ValueError(
            "Invalid service name. Use letters, digits, '_' and '-', starting with a letter (max 63 chars)."
        )


@dataclass(frozen=True)
class ContainerRecord:
    id: str
    name: str
    image: str
    labels: dict[str, str] = field(default_factory=dict)
    ports: dict[int, int] = field(default_factory=dict)  # container tcp port -> host port
    status: str = "running"


@dataclass(frozen=True)
class ContainerSpec:
    image: str
    name: str
    labels: dict[str, str]
    env: dict[str, str]
    binds: list[str]
    privileged: bool = True
    auto_remove: bool = True
    publish_all_ports: bool = True


def _published_ports(raw: dict[str, Any] | None) -> dict[int, int]:
    """Parse ``NetworkSettings.Ports`` into {container port: host port} for tcp."""
    out: dict[int, int] = {}
    for key, bindings in (raw or {}).items():
        port, _, proto = key.partition("/")
        if proto and proto != "tcp":
            continue
        for b in bindings or []:
            host_port = b.get("HostPort")
            if host_port:
                out.setdefault(int(port), int(host_port))
    return out


def _record(container: Any) -> ContainerRecord:
    attrs = container.attrs or {}
    config = attrs.get("Config") or {}
    state = attrs.get("State")
    return ContainerRecord(
        id=container.id,
        name=container.name,
        image=config.get("Image") or attrs.get("Image", ""),
        labels=dict(config.get("Labels") or {}),
        ports=_published_ports((attrs.get("NetworkSettings") or {}).get("Ports")),
        status=state.get("Status", "") if isinstance(state, dict) else (state or ""),
    )


class DockerRuntime:
    """Narrow capability surface over the Docker engine.

    Built once at startup and shared; every call carries the client timeout.
    Transport failures (timeouts, daemon restarts) surface from docker-py as
    raw ``requests`` exceptions and are translated like engine errors.
    """

    def __init__(self, client: docker.DockerClient):
        self.client = client

    @classmethod
    def from_env(cls, timeout_s: int = 60) -> "DockerRuntime":
        try:
            return cls(docker.from_env(timeout=timeout_s))
        except ENGINE_ERRORS as e:
            raise RuntimeAdapterError(f"Docker is not available: {e}") from e

    def list(
        self,
        labels: tuple[str, ...] | list[str] = (),
        name: str | None = None,
        all: bool = False,
    ) -> list[ContainerRecord]:
        filters: dict[str, Any] = {"label": list(labels)}
        if name:
            filters["name"] = name
        try:
            containers = self.client.containers.list(all=all, filters=filters, ignore_removed=True)
        except ENGINE_ERRORS as e:
            raise RuntimeAdapterError(f"Listing containers failed: {e}") from e

        records = [_record(c) for c in containers]
        if name:
            # The engine's name filter matches substrings.
            records = [r for r in records if r.name == name]
        return records

    def pull(self, image: str) -> None:
        repository, tag = parse_repository_tag(image)
        try:
            self.client.images.pull(repository, tag=tag or "latest")
        except ENGINE_ERRORS as e:
            raise RuntimeAdapterError(f"Pulling {image} failed: {e}") from e

    def create(self, spec: ContainerSpec) -> str:
        try:
            container = self.client.containers.create(
                spec.image,
                name=spec.name,
                labels=spec.labels,
                environment=spec.env,
                volumes=spec.binds,
                privileged=spec.privileged,
                auto_remove=spec.auto_remove,
                publish_all_ports=spec.publish_all_ports,
            )
        except APIError as e:
            if e.status_code == 409:
                raise ContainerNameConflict(f"Container name '{spec.name}' is already in use.") from e
            raise RuntimeAdapterError(f"Creating {spec.name} failed: {e}") from e
        except ENGINE_ERRORS as e:
            raise RuntimeAdapterError(f"Creating {spec.name} failed: {e}") from e
        return container.id

    def start(self, container_id: str) -> None:
        try:
            self.client.containers.get(container_id).start()
        except ENGINE_ERRORS as e:
            raise RuntimeAdapterError(f"Starting {container_id[:12]} failed: {e}") from e

    def stop(self, container_id: str, timeout: int = 10) -> None:
        try:
            self.client.containers.get(container_id).stop(timeout=timeout)
        except NotFound:
            # Already gone (auto-removed).
            return
        except ENGINE_ERRORS as e:
            raise RuntimeAdapterError(f"Stopping {container_id[:12]} failed: {e}") from e

    def remove(self, container_id: str) -> None:
        try:
            self.client.containers.get(container_id).remove(force=True)
        except NotFound:
            return
        except ENGINE_ERRORS as e:
            raise RuntimeAdapterError(f"Removing {container_id[:12]} failed: {e}") from e
