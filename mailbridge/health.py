"""HTTP surface of the bridge: liveness, readiness and an on-demand
intake trigger.

* ``GET /health``: 200 while starting or running, 503 once degraded or
  stopping, with the watcher and last-cycle state in the body.
* ``GET /ready``: 200 only when the service runs and the mailbox session
  is established.
* ``POST /check``: start an intake cycle now (202); refused with 503
  while shutting down.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .models import BridgeStatus, CheckAccepted, CycleSummary, HealthStatus
from .watcher import WatcherState

if TYPE_CHECKING:
    from .service import BridgeService

_LIVE = (BridgeStatus.RUNNING, BridgeStatus.STARTING)
_SHUTTING_DOWN = (BridgeStatus.STOPPING, BridgeStatus.STOPPED)


def build_health_status(service: BridgeService) -> HealthStatus:
    report = service.last_report
    return HealthStatus(
        name=service.config.name,
        status=service.status,
        uptime_seconds=time.monotonic() - service.start_time,
        chat_id=service.config.telegram.chat_id,
        watcher_state=service.watcher.state.value,
        reconnect_attempts=service.watcher.reconnect_attempts,
        active_cycles=service.active_cycles,
        topics_supported=service.topics_supported,
        last_cycle=CycleSummary.model_validate(report.to_dict()) if report else None,
    )


def create_health_app(service: BridgeService) -> FastAPI:
    app = FastAPI(title=f"{service.config.name} health", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        status = build_health_status(service)
        return JSONResponse(
            content=status.model_dump(mode="json"),
            status_code=200 if status.status in _LIVE else 503,
        )

    @app.get("/ready")
    async def ready() -> JSONResponse:
        is_ready = (
            service.status == BridgeStatus.RUNNING
            and service.watcher.state is WatcherState.READY
        )
        return JSONResponse(
            content={"ready": is_ready},
            status_code=200 if is_ready else 503,
        )

    @app.post("/check")
    async def check() -> JSONResponse:
        if service.status in _SHUTTING_DOWN:
            body = CheckAccepted(accepted=False, active_cycles=service.active_cycles)
            return JSONResponse(content=body.model_dump(), status_code=503)
        service.trigger_check()
        body = CheckAccepted(accepted=True, active_cycles=service.active_cycles)
        return JSONResponse(content=body.model_dump(), status_code=202)

    return app
