from __future__ import annotations

from pydantic import BaseModel, Field


class AgentService(BaseModel):
    id: str
    name: str
    image: str
    service: str | None = Field(None, description="Logical service name from the service label")


class AgentStatus(BaseModel):
    instance_id: str
    reconciling: bool = Field(..., description="True while a reconcile/configure pass is running")
    watch_index: int = Field(..., ge=0, description="Last Consul index seen by the watch loop")
    last_pass_at: str | None = None
    last_failures: dict[str, str] = Field(default_factory=dict)
    services: list[AgentService] = Field(default_factory=list)


class ConfigureResponse(BaseModel):
    desired: list[str] = Field(default_factory=list)
    started: list[str] = Field(default_factory=list)
    stopped: list[str] = Field(default_factory=list)
    configured: list[str] = Field(default_factory=list, description="Services where at least one container received its configuration")
    failures: dict[str, str] = Field(default_factory=dict, description="service -> error")
