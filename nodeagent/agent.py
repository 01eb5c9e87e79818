from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from typing import Any

from . import kvtree
from .configurator import Configurator
from .db import log_event
from .docker_ops import DockerRuntime
from .lifecycle import ServiceManager
from .reconciler import Reconciler
from .registry import ServiceRegistry, default_registry, load_registry
from .runtime import AgentState
from .settings import Settings
from .store import ConsulKV, KVPair


@dataclass
class PassReport:
    desired: list[str] = field(default_factory=list)
    started: list[str] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)
    configured: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)  # service -> error


class Agent:
    """Entry point for a reconcile-then-configure pass.

    Used by the watch loop on every index change and by the inbound API.
    The lock keeps two passes from interleaving their diff-and-act steps.
    """

    def __init__(
        self,
        settings: Settings,
        store: ConsulKV,
        runtime: DockerRuntime,
        registry: ServiceRegistry | None = None,
        state: AgentState | None = None,
        control_transport: Any = None,
    ):
        self.instance_id = settings.require_instance_id()
        self.store = store
        self.runtime = runtime
        self.registry = registry or default_registry()
        self.state = state or AgentState()
        self._lock = Lock()

        self.manager = ServiceManager(
            runtime,
            self.registry,
            instance_id=self.instance_id,
            config_dir=settings.config_dir,
            managed_label=settings.managed_label,
            service_label=settings.service_label,
            docker_socket=settings.docker_socket,
        )
        self.reconciler = Reconciler(self.manager)
        self.configurator = Configurator(
            self.manager,
            store,
            self.registry,
            instance_id=self.instance_id,
            host=settings.control_host,
            default_control_port=settings.control_port,
            timeout_s=settings.control_timeout_s,
            transport=control_transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Agent":
        settings.require_instance_id()
        registry = load_registry(settings.registry_path) if settings.registry_path else default_registry()
        store = ConsulKV(settings.consul_addr, token=settings.consul_token, wait_s=settings.consul_wait_s)
        runtime = DockerRuntime.from_env(timeout_s=settings.docker_timeout_s)
        return cls(settings, store, runtime, registry=registry)

    def close(self) -> None:
        self.configurator.close()
        self.store.close()

    @property
    def watch_prefix(self) -> str:
        return kvtree.services_prefix(self.instance_id)

    def handle_config(self, pairs: list[KVPair]) -> PassReport:
        with self._lock:
            self.state.begin_pass()
            report = PassReport()
            try:
                desired = kvtree.services_of(kvtree.decode(pairs), self.instance_id)
                report.desired = sorted(desired)

                rec = self.reconciler.ensure_services(desired.keys())
                report.started, report.stopped = rec.started, rec.stopped
                report.failures.update(rec.failures)

                pushed = self.configurator.configure_services(self.manager.local_services())
                report.configured = pushed.configured
                for e in pushed.errors:
                    report.failures.setdefault(e.service, str(e))
            finally:
                self.state.end_pass(report.failures)
            return report

    def reconfigure(self) -> PassReport:
        """Externally triggered pass against a point-in-time read of the tree."""
        log_event("INFO", "Reconfiguration requested")
        return self.handle_config(self.store.list(self.watch_prefix))

    def status(self) -> dict[str, Any]:
        snap = self.state.snapshot()
        services = [
            {"id": c.id, "name": c.name, "image": c.image, "service": c.labels.get(self.manager.service_label)}
            for c in self.manager.managed_containers()
        ]
        return {
            "instance_id": self.instance_id,
            "reconciling": snap.reconciling,
            "watch_index": snap.watch_index,
            "last_pass_at": snap.last_pass_at,
            "last_failures": snap.last_failures,
            "services": services,
        }
