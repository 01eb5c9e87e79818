from __future__ import annotations

from .db import log_event
from .docker_ops import ContainerRecord, ContainerSpec, DockerRuntime
from .errors import ContainerNameConflict
from .registry import ServiceRegistry


class ServiceManager:
    """Starts and stops the one container backing each logical service.

    Containers are correlated to services only through labels: the managed
    label marks them as ours, the service label carries the service name.
    """

    def __init__(
        self,
        runtime: DockerRuntime,
        registry: ServiceRegistry,
        instance_id: str,
        config_dir: str,
        managed_label: str = "com.opencopilot.managed",
        service_label: str = "com.opencopilot.service-manager",
        docker_socket: str = "/var/run/docker.sock",
    ):
        self.runtime = runtime
        self.registry = registry
        self.instance_id = instance_id
        self.config_dir = config_dir
        self.managed_label = managed_label
        self.service_label = service_label
        self.docker_socket = docker_socket

    def container_name(self, service: str) -> str:
        return f"{self.service_label}.{service}"

    def container_spec(self, service: str) -> ContainerSpec:
        spec = self.registry.resolve(service)
        env = {"CONFIG_DIR": self.config_dir, "INSTANCE_ID": self.instance_id}
        env.update(spec.env)
        return ContainerSpec(
            image=spec.image,
            name=self.container_name(service),
            labels={self.managed_label: "", self.service_label: service},
            env=env,
            # Service managers drive Docker themselves and read the shared config dir.
            binds=[
                f"{self.docker_socket}:{self.docker_socket}",
                f"{self.config_dir}:{self.config_dir}",
                *spec.binds,
            ],
            privileged=True,
            # Auto-remove frees the deterministic name for a later re-add.
            auto_remove=True,
            publish_all_ports=True,
        )

    def start(self, service: str) -> None:
        spec = self.container_spec(service)
        log_event("INFO", f"Adding service (image {spec.image})", service_name=service)
        self.runtime.pull(spec.image)
        try:
            container_id = self.runtime.create(spec)
        except ContainerNameConflict:
            container_id = self._reclaim(service, spec)
            if container_id is None:
                return
        self.runtime.start(container_id)
        log_event("INFO", f"Started container {spec.name} ({container_id[:12]})", service_name=service)

    def _reclaim(self, service: str, spec: ContainerSpec) -> str | None:
        """Handle a name collision; returns a fresh container id, or None when already running.

        A container whose start failed stays "created" and is not auto-removed,
        so it is removed and recreated from the current spec.
        """
        existing = self.runtime.list(labels=[self.managed_label], name=spec.name, all=True)
        if not existing:
            raise ContainerNameConflict(f"Container name '{spec.name}' is held by an unmanaged container.")
        if any(c.status == "running" for c in existing):
            log_event("INFO", f"Container {spec.name} already running; nothing to start", service_name=service)
            return None
        for c in existing:
            log_event("WARN", f"Removing leftover {c.status or 'unknown'} container {c.name}", service_name=service)
            self.runtime.remove(c.id)
        return self.runtime.create(spec)

    def stop(self, service: str) -> None:
        containers = self.running(service)
        if not containers:
            return
        log_event("INFO", "Stopping service", service_name=service)
        for c in containers:
            self.runtime.stop(c.id)
            log_event("INFO", f"Stopped container {c.name} ({c.id[:12]})", service_name=service)

    def running(self, service: str) -> list[ContainerRecord]:
        return self.runtime.list(labels=[self.managed_label], name=self.container_name(service))

    def managed_containers(self) -> list[ContainerRecord]:
        return self.runtime.list(labels=[self.managed_label])

    def local_services(self) -> set[str]:
        services: set[str] = set()
        for c in self.managed_containers():
            name = c.labels.get(self.service_label)
            if name:
                services.add(name)
        return services
