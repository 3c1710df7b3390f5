from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from email.utils import format_datetime
from typing import Optional, Sequence

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from gastrak import refresh_log
from gastrak.config import APP_VERSION, Settings, settings_from_env
from gastrak.models import Observation, Snapshot
from gastrak.query import InvalidQuery, PriceQuery, filter_observations, project_timeseries
from gastrak.refresh import RefreshLoop
from gastrak.serializers import to_csv, to_json_list, to_points, to_points_transposed
from gastrak.store import SnapshotPublisher

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

TIMESERIES_FORMATS = ("timeseries", "timeseries-transposed")


def _uptime_str(start_time: float) -> str:
    elapsed = time.monotonic() - start_time
    days = int(elapsed // 86400)
    hours = int((elapsed % 86400) // 3600)
    if days > 0:
        return f"{days}d {hours}h"
    minutes = int((elapsed % 3600) // 60)
    return f"{hours}h {minutes}m"


def get_publisher(request: Request) -> SnapshotPublisher:
    return request.app.state.publisher


def get_snapshot(publisher: SnapshotPublisher = Depends(get_publisher)) -> Snapshot:
    snapshot = publisher.read()
    if snapshot is None:
        raise HTTPException(status_code=503, detail="data not loaded")
    return snapshot


def render(
    observations: Sequence[Observation],
    fmt: str,
    name: str,
    grade: str,
    headers: Optional[dict] = None,
) -> Response:
    """Filter observations and encode them in the requested format."""
    query = PriceQuery(name=name or None, grade=grade or None)
    fmt = (fmt or "csv").strip().lower()

    if fmt == "csv":
        body = to_csv(filter_observations(observations, query))
        return Response(content=body, media_type="text/csv", headers=headers)
    if fmt == "json":
        return JSONResponse(content=to_json_list(filter_observations(observations, query)), headers=headers)
    if fmt in TIMESERIES_FORMATS:
        if not query.name or not query.grade:
            raise InvalidQuery("must specify `name` and `grade` parameters")
        points = project_timeseries(observations, query)
        content = to_points_transposed(points) if fmt == "timeseries-transposed" else to_points(points)
        return JSONResponse(content=content, headers=headers)
    raise InvalidQuery("unrecognized format")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app. Settings default to the environment, read at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or settings_from_env()
        cfg.validate()

        publisher = SnapshotPublisher()
        refresher = RefreshLoop(
            publisher,
            current_path=cfg.current_path,
            history_path=cfg.history_path,
            interval=cfg.refresh_interval,
            refresh_log_path=cfg.refresh_log_path,
        )
        # A failed first load propagates here and the server never starts
        await refresher.start()
        logger.info(
            "Serving %s (history: %s)", cfg.current_path, cfg.history_path or "none",
        )

        app.state.settings = cfg
        app.state.publisher = publisher
        app.state.refresher = refresher
        app.state.start_time = time.monotonic()
        try:
            yield
        finally:
            await refresher.stop()

    app = FastAPI(title="Gastrak Fuel Price Server", version=APP_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidQuery)
    async def invalid_query_handler(request: Request, exc: InvalidQuery):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/current")
    async def get_current(
        snapshot: Snapshot = Depends(get_snapshot),
        format: str = Query("csv"),
        name: str = Query(""),
        grade: str = Query(""),
    ):
        headers = {"Last-Modified": format_datetime(snapshot.loaded_at, usegmt=True)}
        return render(snapshot.current, format, name, grade, headers=headers)

    @app.get("/history")
    async def get_history(
        snapshot: Snapshot = Depends(get_snapshot),
        format: str = Query("csv"),
        name: str = Query(""),
        grade: str = Query(""),
    ):
        if not snapshot.has_history:
            raise HTTPException(status_code=503, detail="history not available")
        return render(snapshot.history, format, name, grade)

    @app.api_route("/api/v1/status", methods=["GET", "HEAD"])
    async def get_status(request: Request, publisher: SnapshotPublisher = Depends(get_publisher)):
        snapshot = publisher.read()
        return JSONResponse(
            content={
                "version": APP_VERSION,
                "uptime": _uptime_str(request.app.state.start_time),
                "loaded_at": snapshot.loaded_at.strftime("%Y-%m-%dT%H:%M:%SZ") if snapshot else None,
                "snapshots_published": publisher.generation,
                "current_observations": len(snapshot.current) if snapshot else 0,
                "history_observations": len(snapshot.history) if snapshot else 0,
                "stations": snapshot.station_count if snapshot else 0,
                "history_available": bool(snapshot and snapshot.has_history),
                "refresh": request.app.state.refresher.status,
            }
        )

    @app.get("/api/v1/refreshes")
    async def get_refreshes(
        request: Request,
        page: int = Query(1, ge=1),
        status: str = Query(""),
    ):
        events, total = refresh_log.load_page(
            request.app.state.settings.refresh_log_path, page=page, status=status,
        )
        return JSONResponse(
            content={
                "total": total,
                "page": page,
                "page_size": refresh_log.PAGE_SIZE,
                "events": [asdict(e) for e in events],
            }
        )

    return app


app = create_app()
