from __future__ import annotations

from threading import Event, Thread
from typing import Callable

from .db import log_event
from .errors import RuntimeAdapterError, StoreError
from .runtime import AgentState
from .store import ConsulKV, KVPair


# Failures worth retrying: the store or the engine may come back, and the next
# pass recomputes everything from scratch.
RETRYABLE = (StoreError, RuntimeAdapterError)


class WatchLoop:
    """Long-polls the services subtree and runs the handler on every index change.

    Strictly sequential: the next blocking query is only issued once the
    handler for the previous change has returned.
    """

    def __init__(
        self,
        store: ConsulKV,
        prefix: str,
        handler: Callable[[list[KVPair]], object],
        state: AgentState | None = None,
        backoff_initial_s: float = 1.0,
        backoff_max_s: float = 60.0,
        on_fatal: Callable[[BaseException], object] | None = None,
    ):
        self.store = store
        self.prefix = prefix
        self.handler = handler
        self.state = state or AgentState()
        self.backoff_initial_s = max(0.0, float(backoff_initial_s))
        self.backoff_max_s = max(self.backoff_initial_s, float(backoff_max_s))
        self.on_fatal = on_fatal
        self._stop = Event()
        self._thr: Thread | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._thr = Thread(target=self._run_guarded, daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    def _run_guarded(self) -> None:
        try:
            self.run()
        except Exception as e:
            if self.on_fatal is None:
                raise
            self.on_fatal(e)

    def step(self, index: int) -> int:
        pairs, last_index = self.store.list_since(self.prefix, index)
        if last_index != index:
            self.handler(pairs)
        # Only advanced once the handler succeeded, so a failed pass is retried.
        self.state.set_watch_index(last_index)
        return last_index

    def backoff(self, failures: int) -> float:
        return min(self.backoff_max_s, self.backoff_initial_s * (2 ** max(0, failures - 1)))

    def run(self) -> None:
        log_event("INFO", f"Watching {self.prefix}")
        index = self.state.snapshot().watch_index
        failures = 0
        while not self._stop.is_set():
            try:
                index = self.step(index)
                failures = 0
            except RETRYABLE as e:
                failures += 1
                delay = self.backoff(failures)
                log_event("WARN", f"Watch iteration failed ({type(e).__name__}: {e}); retrying in {delay:g}s")
                self._stop.wait(delay)
            except Exception as e:
                log_event("ERROR", f"Watch loop stopped: {type(e).__name__}: {e}")
                raise
        log_event("INFO", "Watch loop stopped")
