"""FastAPI application that exposes a local JSON API for the work checker."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from . import clock
from .config import MONTH_DAYS, WEEK_DAYS, TrackerSettings
from .db import StorageError
from .errorlog import ErrorLogBuffer, install_error_log
from .models import DayAggregate, WorkSegment
from .sessions import SessionManager

logger = logging.getLogger(__name__)


class SegmentUpdate(BaseModel):
    start_timestamp: int
    stop_timestamp: int
    day_id: Optional[int] = None

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    settings: Optional[TrackerSettings] = None,
    manager: Optional[SessionManager] = None,
    error_log: Optional[ErrorLogBuffer] = None,
) -> FastAPI:
    """Instantiate the FastAPI application around one session manager."""
    if manager is None:
        manager = SessionManager.from_settings(settings or TrackerSettings.from_options())
    error_log = install_error_log(error_log)

    app = FastAPI(title="Work Checker", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.manager = manager
    app.state.error_log = error_log

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        manager.close()

    @app.exception_handler(StorageError)
    async def _storage_error(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Request %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        current: SessionManager = request.app.state.manager
        return {
            "session_active": current.is_session_active,
            "session_start": current.session_start,
            "current_session_seconds": current.current_session_duration(),
            "database_available": current.db.is_available,
            "database_path": str(current.db.path),
            "timezone": getattr(current.tz, "key", "local"),
        }

    @app.get("/api/durations")
    def durations(
        request: Request,
        average: bool = Query(default=False, description="Return per-day averages."),
    ) -> Dict[str, Any]:
        current: SessionManager = request.app.state.manager
        query = current.daily_average if average else current.windowed_duration
        return {
            "average": average,
            "today_seconds": current.today_duration(),
            "past_7_days_seconds": query(WEEK_DAYS),
            "past_30_days_seconds": query(MONTH_DAYS),
        }

    @app.get("/api/history")
    def history(request: Request) -> Dict[str, Any]:
        current: SessionManager = request.app.state.manager
        return {
            "months": [
                {
                    "year": group.year,
                    "month": group.month,
                    "total_seconds": group.total,
                    "days": [_day_payload(day) for day in group.days],
                }
                for group in current.month_history()
            ]
        }

    @app.get("/api/segments")
    def segments(
        request: Request,
        since: Optional[str] = Query(
            default=None,
            description="Only segments starting on or after this date (YYYY-MM-DD).",
        ),
    ) -> Dict[str, Any]:
        current: SessionManager = request.app.state.manager
        if since:
            day = _parse_date(since)
            found = current.segments.get_segments_starting_at_or_after(
                clock.start_of_date(day.year, day.month, day.day, current.tz)
            )
        else:
            found = current.segments.get_all_segments()
        return {"segments": [_segment_payload(segment) for segment in found]}

    @app.post("/api/session/start")
    def start_session(request: Request) -> Dict[str, Any]:
        current: SessionManager = request.app.state.manager
        started = current.start_working()
        return {"started": started, "session_start": current.session_start}

    @app.post("/api/session/stop")
    def stop_session(request: Request) -> Dict[str, Any]:
        current: SessionManager = request.app.state.manager
        was_active = current.is_session_active
        recorded = current.stop_working()
        return {
            "stopped": was_active,
            "segments": [_segment_payload(segment) for segment in recorded],
        }

    @app.patch("/api/segments/{segment_id}")
    def update_segment(
        segment_id: int, payload: SegmentUpdate, request: Request
    ) -> Dict[str, Any]:
        if payload.stop_timestamp <= payload.start_timestamp:
            raise HTTPException(
                status_code=400, detail="stop_timestamp must be after start_timestamp"
            )
        current: SessionManager = request.app.state.manager
        if not current.segments.update_segment(
            segment_id, payload.start_timestamp, payload.stop_timestamp, payload.day_id
        ):
            raise HTTPException(status_code=404, detail="Segment not found")
        segment = current.segments.get_segment(segment_id)
        if segment is None:
            raise HTTPException(status_code=404, detail="Segment not found")
        return _segment_payload(segment)

    @app.delete("/api/segments/{segment_id}")
    def delete_segment(segment_id: int, request: Request) -> Dict[str, Any]:
        current: SessionManager = request.app.state.manager
        if not current.segments.delete_segment(segment_id):
            raise HTTPException(status_code=404, detail="Segment not found")
        return {"deleted": segment_id}

    @app.get("/api/verify")
    def verify(
        request: Request,
        days: int = Query(default=MONTH_DAYS, ge=1, description="Window length in days."),
    ) -> Dict[str, Any]:
        current: SessionManager = request.app.state.manager
        report = current.check_consistency(days)
        return {
            "days": report.n_days,
            "window_start": report.window_start,
            "aggregate_seconds": report.aggregate_total,
            "segment_seconds": report.segment_total,
            "detached_seconds": report.detached_total,
            "consistent": report.is_consistent,
        }

    @app.get("/api/logs")
    def logs(request: Request) -> Dict[str, Any]:
        buffer: ErrorLogBuffer = request.app.state.error_log
        return {"entries": [entry.as_dict() for entry in buffer.entries()]}

    return app


def _parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc


def _segment_payload(segment: WorkSegment) -> Dict[str, Any]:
    return {
        "id": segment.id,
        "start_timestamp": segment.start_timestamp,
        "stop_timestamp": segment.stop_timestamp,
        "day_id": segment.day_id,
        "duration_seconds": segment.duration,
    }


def _day_payload(day: DayAggregate) -> Dict[str, Any]:
    return {
        "id": day.id,
        "date": day.date.isoformat(),
        "start_of_day_timestamp": day.start_of_day_timestamp,
        "total_seconds": day.total_worked_duration,
    }
