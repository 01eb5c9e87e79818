from __future__ import annotations

import os
from dataclasses import dataclass

from .errors import ConfigError


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Identity
    instance_id: str = os.getenv("INSTANCE_ID", "")
    config_dir: str = os.getenv("CONFIG_DIR", "/etc/opencopilot")

    # Consul
    consul_addr: str = os.getenv("CONSUL_HTTP_ADDR", "http://127.0.0.1:8500")
    consul_token: str | None = os.getenv("CONSUL_HTTP_TOKEN")
    consul_wait_s: int = _env_int("AGENT_CONSUL_WAIT_S", 300)

    # Docker
    docker_socket: str = os.getenv("AGENT_DOCKER_SOCKET", "/var/run/docker.sock")
    docker_timeout_s: int = _env_int("AGENT_DOCKER_TIMEOUT_S", 60)
    managed_label: str = os.getenv("AGENT_MANAGED_LABEL", "com.opencopilot.managed")
    service_label: str = os.getenv("AGENT_SERVICE_LABEL", "com.opencopilot.service-manager")
    registry_path: str | None = os.getenv("AGENT_REGISTRY_PATH")

    # Service control plane
    control_port: int = _env_int("AGENT_CONTROL_PORT", 50052)
    control_host: str = os.getenv("AGENT_CONTROL_HOST", "localhost")
    control_timeout_s: int = _env_int("AGENT_CONTROL_TIMEOUT_S", 10)

    # Agent API / journal
    db_path: str = os.getenv("AGENT_DB_PATH", "agent.db")
    api_host: str = os.getenv("AGENT_API_HOST", "0.0.0.0")
    api_port: int = _env_int("AGENT_API_PORT", 50051)

    # Watch loop retry after store errors
    backoff_initial_s: int = _env_int("AGENT_BACKOFF_INITIAL_S", 1)
    backoff_max_s: int = _env_int("AGENT_BACKOFF_MAX_S", 60)

    def require_instance_id(self) -> str:
        if not self.instance_id.strip():
            raise ConfigError("No instance ID specified (set INSTANCE_ID).")
        return self.instance_id


settings = Settings()
