import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shiftledger.db import SessionLocal, engine
from shiftledger.errors import ApiError, error_response
from shiftledger.logging_utils import setup_json_logging
from shiftledger.routers import admin, attendance
from shiftledger.services.attendance import auto_checkout_stale_sessions
from shiftledger.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from shiftledger.services.work_day import WorkDayBoundaryCache, build_work_day_cache
from shiftledger.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("shiftledger.request")
worker_logger = logging.getLogger("shiftledger.worker")


app = FastAPI(title=settings.app_name, version="0.1.0")
app.state.work_day_cache = build_work_day_cache()
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
                "employee_id": getattr(request.state, "employee_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    code_map = {
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
    }
    return error_response(
        request,
        status_code=exc.status_code,
        code=code_map.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail) if exc.detail else "Request failed.",
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(attendance.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def run_attendance_maintenance(cache: WorkDayBoundaryCache, now_utc: datetime) -> int:
    """Refreshes the work-day reset time and closes sessions left open past their work day."""
    with SessionLocal() as db:
        cache.refresh(db, now_utc)
        boundary = cache.resolve(db, now_utc)
        return len(auto_checkout_stale_sessions(db, boundary=boundary, now_utc=now_utc))


async def _attendance_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(15, int(settings.attendance_worker_interval_seconds))
    while not stop_event.is_set():
        try:
            closed_count = await asyncio.to_thread(
                run_attendance_maintenance,
                app.state.work_day_cache,
                datetime.now(timezone.utc),
            )
        except Exception:
            worker_logger.exception("attendance_worker_tick_failed")
        else:
            if closed_count:
                worker_logger.info("attendance_worker_tick", extra={"auto_closed_sessions": closed_count})

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        worker_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    worker_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError(f"Runtime schema guard failed: {'; '.join(result.issues)}")


@app.on_event("startup")
async def start_attendance_worker() -> None:
    if not settings.attendance_worker_enabled:
        return
    if getattr(app.state, "attendance_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    app.state.attendance_worker_stop_event = stop_event
    app.state.attendance_worker_task = asyncio.create_task(_attendance_worker_loop(stop_event))
    worker_logger.info(
        "attendance_worker_started",
        extra={"interval_seconds": max(15, int(settings.attendance_worker_interval_seconds))},
    )


@app.on_event("shutdown")
async def stop_attendance_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "attendance_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "attendance_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.attendance_worker_stop_event = None
    app.state.attendance_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(
        app.state,
        "schema_guard_result",
        _default_schema_guard_result(),
    )
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "attendance_worker_running": getattr(app.state, "attendance_worker_task", None) is not None,
    }
