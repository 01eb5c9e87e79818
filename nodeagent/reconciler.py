from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .db import log_event
from .errors import AgentError
from .lifecycle import ServiceManager


@dataclass(frozen=True)
class ReconciliationDiff:
    to_start: frozenset[str]
    to_stop: frozenset[str]

    @property
    def empty(self) -> bool:
        return not self.to_start and not self.to_stop


@dataclass
class ReconcileReport:
    started: list[str] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)  # service -> error


def diff(desired: Iterable[str], actual: Iterable[str]) -> ReconciliationDiff:
    want, have = set(desired), set(actual)
    return ReconciliationDiff(to_start=frozenset(want - have), to_stop=frozenset(have - want))


class Reconciler:
    """Drives running, managed containers towards the desired service set."""

    def __init__(self, manager: ServiceManager):
        self.manager = manager

    def ensure_services(self, desired: Iterable[str]) -> ReconcileReport:
        actual = self.manager.local_services()
        d = diff(desired, actual)
        report = ReconcileReport()

        # A failed action is retried by the next pass, which recomputes the diff.
        for service in sorted(d.to_start):
            try:
                self.manager.start(service)
                report.started.append(service)
            except AgentError as e:
                report.failures[service] = str(e)
                log_event("ERROR", f"Start failed: {type(e).__name__}: {e}", service_name=service)

        for service in sorted(d.to_stop):
            try:
                self.manager.stop(service)
                report.stopped.append(service)
            except AgentError as e:
                report.failures[service] = str(e)
                log_event("ERROR", f"Stop failed: {type(e).__name__}: {e}", service_name=service)

        return report
