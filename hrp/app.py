from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import RedirectResponse

from .api_models import EventOut, SnapshotOut
from .directory import DiscoveryError, ServiceDirectory
from .events import EventLog
from .orchestrator import OrchestratorClient, build_orchestrator
from .refresher import Refresher
from .router import RequestRouter, RoutingError
from .settings import Settings


PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(
    settings: Settings,
    orchestrator: OrchestratorClient | None = None,
    events: EventLog | None = None,
) -> FastAPI:
    events = events or EventLog(settings.db_path)
    orchestrator = orchestrator or build_orchestrator(settings)
    directory = ServiceDirectory(
        orchestrator,
        cluster=settings.cluster,
        events=events,
        refresh_timeout_s=settings.refresh_timeout_s,
    )
    router = RequestRouter(directory, header_name=settings.routing_header)
    refresher = Refresher(directory, settings.refresh_interval_s) if settings.refresh_interval_s > 0 else None

    app = FastAPI(title="Header Routing Proxy")
    app.state.settings = settings
    app.state.directory = directory
    app.state.router = router
    app.state.events = events

    @app.on_event("startup")
    def startup() -> None:
        events.init_db()
        events.log("INFO", f"Starting proxy for cluster '{settings.cluster}' ({settings.orchestrator}, {settings.aws_region})")
        try:
            directory.ensure_fresh()
        except DiscoveryError as e:
            events.log("ERROR", f"Initial discovery failed, starting with an empty directory: {e}")
        if refresher is not None:
            refresher.start()

    @app.on_event("shutdown")
    def shutdown() -> None:
        if refresher is not None:
            refresher.stop()

    # Sync handlers run in the server's threadpool, one request per worker thread.
    @app.api_route("/", methods=PROXY_METHODS, include_in_schema=False)
    def proxy(request: Request) -> RedirectResponse:
        try:
            target = router.route(request.headers)
        except RoutingError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
        return RedirectResponse(url=target.location, status_code=target.status_code)

    prefix = settings.admin_prefix

    @app.get(f"{prefix}/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get(f"{prefix}/instances", response_model=SnapshotOut)
    def instances() -> SnapshotOut:
        return SnapshotOut.from_snapshot(directory.snapshot)

    @app.post(f"{prefix}/refresh", response_model=SnapshotOut)
    def refresh() -> SnapshotOut:
        try:
            snap = directory.ensure_fresh()
        except DiscoveryError as e:
            raise HTTPException(status_code=502, detail=f"Discovery failed: {e}")
        return SnapshotOut.from_snapshot(snap)

    @app.get(f"{prefix}/events", response_model=list[EventOut])
    def recent_events(limit: int = 50) -> list[EventOut]:
        return [EventOut.from_row(r) for r in events.recent(limit)]

    return app
