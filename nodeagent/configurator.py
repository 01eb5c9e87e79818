"""Delivery of per-service configuration to each service's control plane.

The push is an HTTP ``POST /configure`` carrying ``{"config": "<json document>"}``
to the host port published for the service's control port. Service managers
that only expose the gRPC ``Manager.Configure`` method do not understand this
request and need an HTTP endpoint in front of them.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Iterable

import httpx

from . import kvtree
from .db import log_event
from .errors import AgentError, ConfigurePushError, DecodeError
from .lifecycle import ServiceManager
from .registry import DEFAULT_CONTROL_PORT, ServiceRegistry
from .store import ConsulKV


@dataclass
class ConfigureReport:
    configured: list[str] = field(default_factory=list)  # at least one container received its config
    errors: list[ConfigurePushError] = field(default_factory=list)


class Configurator:
    """Pushes each running service's config sub-document to its control plane."""

    def __init__(
        self,
        manager: ServiceManager,
        store: ConsulKV,
        registry: ServiceRegistry,
        instance_id: str,
        host: str = "localhost",
        default_control_port: int = DEFAULT_CONTROL_PORT,
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.manager = manager
        self.store = store
        self.registry = registry
        self.instance_id = instance_id
        self.host = host
        self.default_control_port = default_control_port
        self._http = httpx.Client(timeout=timeout_s, follow_redirects=False, transport=transport)

    def close(self) -> None:
        self._http.close()

    def control_port(self, service: str) -> int:
        spec = self.registry.get(service)
        return spec.control_port if spec else self.default_control_port

    def service_config(self, service: str) -> str:
        """Read the service's subtree fresh and serialize its config document."""
        pairs = self.store.list(kvtree.service_prefix(self.instance_id, service))
        doc = kvtree.service_document(kvtree.decode(pairs), self.instance_id, service)
        return json.dumps(doc if doc is not None else {}, sort_keys=True)

    def configure_service(self, service: str) -> int:
        """Configure every running container of ``service``; returns how many were configured."""
        containers = self.manager.running(service)
        if not containers:
            return 0

        private_port = self.control_port(service)
        config: str | None = None
        configured = 0
        for c in containers:
            public_port = c.ports.get(private_port)
            if public_port is None:
                log_event(
                    "WARN",
                    f"Container {c.name} publishes no port for {private_port}/tcp; skipping configuration",
                    service_name=service,
                )
                continue
            if config is None:
                config = self.service_config(service)

            url = f"http://{self.host}:{public_port}/configure"
            try:
                resp = self._http.post(url, json={"config": config})
            except httpx.HTTPError as e:
                raise ConfigurePushError(service, f"{type(e).__name__}: {e}") from e
            if resp.status_code >= 300:
                raise ConfigurePushError(service, f"HTTP {resp.status_code} from {url}")

            configured += 1
            log_event("INFO", f"Configured container {c.name} via port {public_port}", service_name=service)
        return configured

    def configure_services(self, services: Iterable[str]) -> ConfigureReport:
        report = ConfigureReport()
        for service in sorted(services):
            try:
                if self.configure_service(service) > 0:
                    report.configured.append(service)
            except DecodeError:
                raise
            except AgentError as e:
                err = e if isinstance(e, ConfigurePushError) else ConfigurePushError(service, f"{type(e).__name__}: {e}")
                report.errors.append(err)
                log_event("ERROR", f"Configuration push failed: {err}", service_name=service)
        return report
