"""Static registry mapping a logical service name to its container spec.

Extra entries can be loaded from a JSON file::

    {"services": {"DNS": {"image": "quay.io/example/dns-manager", "control_port": 50052}}}
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, ValidationError

from .docker_ops import validate_service_name
from .errors import ConfigError, UnsupportedService


DEFAULT_CONTROL_PORT = 50052


@dataclass(frozen=True)
class ServiceSpec:
    image: str
    control_port: int = DEFAULT_CONTROL_PORT
    env: dict[str, str] = field(default_factory=dict)
    binds: tuple[str, ...] = ()


class ServiceSpecModel(BaseModel):
    image: str = Field(..., min_length=1, description="Docker image (name:tag)")
    control_port: int = Field(DEFAULT_CONTROL_PORT, ge=1, le=65535, description="Container port of the control plane")
    env: dict[str, str] = Field(default_factory=dict)
    binds: list[str] = Field(default_factory=list, description="Extra host:container bind mounts")


class RegistryFile(BaseModel):
    services: dict[str, ServiceSpecModel] = Field(default_factory=dict)


class ServiceRegistry:
    def __init__(self, specs: dict[str, ServiceSpec] | None = None):
        self._specs: dict[str, ServiceSpec] = {}
        for name, spec in (specs or {}).items():
            self.register(name, spec)

    def register(self, name: str, spec: ServiceSpec) -> None:
        validate_service_name(name)
        self._specs[name] = spec

    def resolve(self, name: str) -> ServiceSpec:
        spec = self._specs.get(name)
        if spec is None:
            raise UnsupportedService(name)
        return spec

    def get(self, name: str) -> ServiceSpec | None:
        return self._specs.get(name)


def default_registry() -> ServiceRegistry:
    return ServiceRegistry({"LB": ServiceSpec(image="quay.io/opencopilot/haproxy-manager")})


def load_registry(path: str, base: ServiceRegistry | None = None) -> ServiceRegistry:
    registry = base or default_registry()
    try:
        with open(path, encoding="utf-8") as fh:
            parsed = RegistryFile.model_validate(json.load(fh))
    except (OSError, ValueError, ValidationError) as e:
        raise ConfigError(f"Cannot load service registry from {path}: {e}") from e

    for name, m in parsed.services.items():
        try:
            registry.register(
                name,
                ServiceSpec(image=m.image, control_port=m.control_port, env=dict(m.env), binds=tuple(m.binds)),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid service name '{name}' in {path}: {e}") from e
    return registry
