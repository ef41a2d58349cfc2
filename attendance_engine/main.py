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
from fastapi.encoders import jsonable_encoder

from attendance_engine.db import engine
from attendance_engine.errors import ApiError, error_response
from attendance_engine.logging_utils import setup_json_logging
from attendance_engine.routers import attendance, jobs
from attendance_engine.services.reconciliation import run_reconciliation
from attendance_engine.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from attendance_engine.settings import get_cors_origins, get_settings

setup_json_logging()
logger = logging.getLogger("attendance_engine.request")
worker_logger = logging.getLogger("attendance_engine.worker")
settings = get_settings()

MIN_WORKER_INTERVAL_SECONDS = 30


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
    request.state.actor = getattr(request.state, "actor", "anonymous")

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
                "actor": getattr(request.state, "actor", "anonymous"),
                "member_id": getattr(request.state, "member_id", None),
                "attendance_id": getattr(request.state, "attendance_id", None),
                "scan_outcome": getattr(request.state, "scan_outcome", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "api_error",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "path": request.url.path,
                "code": exc.code,
            },
        )
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
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
        status_code=400,
        code="VALIDATION_ERROR",
        message="Invalid input.",
        details=jsonable_encoder(exc.errors(), exclude={"ctx", "url"}),
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
app.include_router(jobs.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


async def _reconciliation_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(MIN_WORKER_INTERVAL_SECONDS, int(settings.reconciliation_worker_interval_seconds))
    while not stop_event.is_set():
        try:
            summary = await asyncio.to_thread(run_reconciliation, datetime.now(timezone.utc))
        except Exception:
            worker_logger.exception("reconciliation_worker_tick_failed")
        else:
            app.state.last_reconciliation = summary.to_dict()
            if summary.archived or summary.updated:
                worker_logger.info("reconciliation_worker_tick", extra=summary.to_dict())

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
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_reconciliation_worker() -> None:
    if not settings.reconciliation_worker_enabled:
        return
    if getattr(app.state, "reconciliation_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_reconciliation_worker_loop(stop_event))
    app.state.reconciliation_worker_stop_event = stop_event
    app.state.reconciliation_worker_task = task
    worker_logger.info(
        "reconciliation_worker_started",
        extra={
            "interval_seconds": max(
                MIN_WORKER_INTERVAL_SECONDS,
                int(settings.reconciliation_worker_interval_seconds),
            ),
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


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    worker_task = getattr(app.state, "reconciliation_worker_task", None)
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "reconciliation_worker": {
            "enabled": settings.reconciliation_worker_enabled,
            "running": worker_task is not None and not worker_task.done(),
            "last_run": getattr(app.state, "last_reconciliation", None),
        },
    }
