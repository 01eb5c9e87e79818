from __future__ import annotations


class AgentError(Exception):
    pass


class ConfigError(AgentError):
    """Process configuration is unusable; the agent cannot start."""


class StoreError(AgentError):
    pass


class DecodeError(AgentError):
    """The config tree is structurally malformed and cannot be trusted."""


class RuntimeAdapterError(AgentError):
    pass


class ContainerNameConflict(RuntimeAdapterError):
    pass


class UnsupportedService(AgentError):
    def __init__(self, service: str):
        super().__init__(f"Unsupported service '{service}'.")
        self.service = service


class ConfigurePushError(AgentError):
    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service
