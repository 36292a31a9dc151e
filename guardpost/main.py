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

from guardpost.clock import get_clock
from guardpost.db import engine
from guardpost.errors import ApiError, error_response
from guardpost.logging_utils import bind_request_id, reset_request_id, setup_json_logging
from guardpost.routers import admin, assignments, attendance
from guardpost.services.reconciliation import ReconciliationSchedule, run_due_reconciliation_jobs
from guardpost.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from guardpost.settings import (
    get_absence_sweep_local_time,
    get_cors_origins,
    get_daily_summary_local_time,
    get_settings,
    get_worker_interval_seconds,
)

settings = get_settings()
setup_json_logging(service="guardpost", level=settings.log_level)
logger = logging.getLogger("guardpost.request")
reconciliation_worker_logger = logging.getLogger("guardpost.reconciliation")


app = FastAPI(title=settings.app_name, version="0.1.0")
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
    request_id_token = bind_request_id(request_id)

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
                "guard_id": getattr(request.state, "guard_id", None),
            },
        )
        reset_request_id(request_id_token)


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message="Request validation failed.",
        details={"errors": [{"loc": list(item.get("loc", ())), "msg": item.get("msg")} for item in exc.errors()]},
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


app.include_router(assignments.router)
app.include_router(attendance.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


async def _reconciliation_worker_loop(stop_event: asyncio.Event, schedule: ReconciliationSchedule) -> None:
    interval_seconds = get_worker_interval_seconds()
    clock = get_clock()
    while not stop_event.is_set():
        try:
            results = await asyncio.to_thread(run_due_reconciliation_jobs, schedule, clock)
        except Exception:
            reconciliation_worker_logger.exception("reconciliation_worker_tick_failed")
        else:
            if results:
                reconciliation_worker_logger.info("reconciliation_worker_tick", extra={"results": results})

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        reconciliation_worker_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    reconciliation_worker_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_reconciliation_worker() -> None:
    if not settings.reconciliation_worker_enabled:
        return
    if getattr(app.state, "reconciliation_worker_task", None) is not None:
        return

    schedule = ReconciliationSchedule(
        absence_sweep_at=get_absence_sweep_local_time(),
        daily_summary_at=get_daily_summary_local_time(),
    )
    stop_event = asyncio.Event()
    task = asyncio.create_task(_reconciliation_worker_loop(stop_event, schedule))
    app.state.reconciliation_schedule = schedule
    app.state.reconciliation_worker_stop_event = stop_event
    app.state.reconciliation_worker_task = task
    reconciliation_worker_logger.info(
        "reconciliation_worker_started",
        extra={
            "interval_seconds": get_worker_interval_seconds(),
            "absence_sweep_local_time": schedule.absence_sweep_at.isoformat(),
            "daily_summary_local_time": schedule.daily_summary_at.isoformat(),
        },
    )


@app.on_event("shutdown")
async def stop_reconciliation_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "reconciliation_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "reconciliation_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.reconciliation_worker_stop_event = None
    app.state.reconciliation_worker_task = None


def _worker_state() -> dict[str, Any]:
    task: asyncio.Task[None] | None = getattr(app.state, "reconciliation_worker_task", None)
    schedule: ReconciliationSchedule | None = getattr(app.state, "reconciliation_schedule", None)
    state: dict[str, Any] = {
        "enabled": settings.reconciliation_worker_enabled,
        "running": task is not None and not task.done(),
    }
    if schedule is not None:
        state.update(
            {
                "last_missed_checkout_slot": (
                    schedule.last_missed_checkout_slot.isoformat() if schedule.last_missed_checkout_slot else None
                ),
                "last_absence_day": schedule.last_absence_day.isoformat() if schedule.last_absence_day else None,
                "last_summary_day": schedule.last_summary_day.isoformat() if schedule.last_summary_day else None,
            }
        )
    return state


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "reconciliation_worker": _worker_state(),
    }
