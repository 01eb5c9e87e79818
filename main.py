from __future__ import annotations

import os
import signal
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, HTTPException

from nodeagent import db
from nodeagent.agent import Agent
from nodeagent.api_models import AgentStatus, ConfigureResponse
from nodeagent.errors import DecodeError, RuntimeAdapterError, StoreError
from nodeagent.settings import settings
from nodeagent.watch import WatchLoop


def _terminate(exc: BaseException) -> None:
    # Malformed config or another fatal condition: there is no degraded mode.
    os.kill(os.getpid(), signal.SIGTERM)


def create_app(agent: Agent | None = None, watch: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.init_db()
        current = agent or Agent.from_settings(settings)
        app.state.agent = current
        loop = None
        if watch:
            loop = WatchLoop(
                current.store,
                current.watch_prefix,
                current.handle_config,
                state=current.state,
                backoff_initial_s=settings.backoff_initial_s,
                backoff_max_s=settings.backoff_max_s,
                on_fatal=_terminate,
            )
            loop.start()
            db.log_event("INFO", f"Agent started for instance {current.instance_id}")
        yield
        if loop is not None:
            loop.stop()
        current.close()

    app = FastAPI(title="Node Agent", lifespan=lifespan)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/status", response_model=AgentStatus)
    def status():
        try:
            return app.state.agent.status()
        except RuntimeAdapterError as e:
            raise HTTPException(status_code=503, detail=str(e))

    @app.post("/configure", response_model=ConfigureResponse)
    def configure():
        try:
            return asdict(app.state.agent.reconfigure())
        except (StoreError, RuntimeAdapterError) as e:
            raise HTTPException(status_code=503, detail=str(e))
        except DecodeError as e:
            db.log_event("ERROR", f"Malformed config tree: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/events")
    def events(limit: int = 100):
        return db.latest_events(max(1, min(1000, limit)))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
