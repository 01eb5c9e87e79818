from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class StateSnapshot:
    watch_index: int
    reconciling: bool
    last_pass_at: str | None
    last_failures: dict[str, str] = field(default_factory=dict)


class AgentState:
    """In-memory state shared by the watch loop and the API handlers."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.watch_index = 0
        self.reconciling = False  # observability only; the agent lock serializes passes
        self.last_pass_at: str | None = None
        self.last_failures: dict[str, str] = {}  # service -> error

    def set_watch_index(self, index: int) -> None:
        with self.lock:
            self.watch_index = index

    def begin_pass(self) -> None:
        with self.lock:
            self.reconciling = True

    def end_pass(self, failures: dict[str, str] | None = None) -> None:
        with self.lock:
            self.reconciling = False
            self.last_pass_at = utc_now()
            self.last_failures = dict(failures or {})

    def snapshot(self) -> StateSnapshot:
        with self.lock:
            return StateSnapshot(
                watch_index=self.watch_index,
                reconciling=self.reconciling,
                last_pass_at=self.last_pass_at,
                last_failures=dict(self.last_failures),
            )
