from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.adapters import board_store
from app.routers import health, project_reports, reports
from app.services.report_errors import ReportError

logger = logging.getLogger("bboard.api")
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(handler)
logger.propagate = False
logger.setLevel(logging.INFO)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "1" if default else "").strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _slow_request_ms_threshold() -> float:
    raw = os.getenv("API_SLOW_REQUEST_MS", "1500").strip()
    try:
        return max(25.0, float(raw))
    except ValueError:
        return 1500.0


CORRELATION_HEADERS = ("x-request-id", "x-correlation-id", "traceparent")


def _correlation_id(request: Request) -> str:
    for key in CORRELATION_HEADERS:
        value = request.headers.get(key)
        if value:
            return value
    return "none"


def _client_identity(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",", 1)[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _append_exposed_headers(existing: str | None, extra: list[str]) -> str:
    merged: list[str] = []
    seen: set[str] = set()
    for chunk in ((existing or "").split(","), extra):
        for value in chunk:
            item = str(value).strip()
            if not item:
                continue
            key = item.lower()
            if key in seen:
                continue
            seen.add(key)
            merged.append(item)
    return ", ".join(merged)


def _apply_runtime_response_headers(response: Response, request: Request, elapsed_ms: float) -> None:
    response.headers["x-bboard-runtime-ms"] = f"{max(0.1, float(elapsed_ms)):.4f}"
    correlation_id = _correlation_id(request)
    if correlation_id != "none":
        response.headers["x-bboard-request-id"] = correlation_id
    response.headers["access-control-expose-headers"] = _append_exposed_headers(
        response.headers.get("access-control-expose-headers"),
        ["x-bboard-runtime-ms", "x-bboard-request-id"],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    started = time.perf_counter()
    if _env_flag("BBOARD_CREATE_SCHEMA", True):
        board_store.ensure_schema()
    app.state.capabilities = board_store.detect_capabilities()
    logger.info(
        "api_startup elapsed_ms=%.2f standup_quality=%s",
        (time.perf_counter() - started) * 1000.0,
        app.state.capabilities.standup_quality,
    )
    yield
    board_store.reset_engine_cache()


app = FastAPI(title="B Board Reports API", version="1.0.0", lifespan=lifespan)

# Configure CORS
allowed_origins_str = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000")
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ReportError)
async def report_error_handler(request: Request, exc: ReportError) -> JSONResponse:
    return JSONResponse(exc.body(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"message": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_api_error path=%s correlation=%s", request.url.path, _correlation_id(request))
    return JSONResponse({"message": "Internal server error"}, status_code=500)


@app.get("/", include_in_schema=False)
async def root():
    """Redirect to API documentation."""
    return RedirectResponse(url="/docs")


app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(reports.router, prefix="/api", tags=["reports"])
app.include_router(project_reports.router, prefix="/api", tags=["project-reports"])


@app.middleware("http")
async def capture_request_timing(request: Request, call_next):
    if not request.url.path.startswith("/api"):
        return await call_next(request)

    start = time.perf_counter()
    status_code: int | None = None
    exc_name: str | None = None
    response = None
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception as exc:
        status_code = 500
        exc_name = exc.__class__.__name__
        raise
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        if status_code is None:
            status_code = 500
        if response is not None:
            _apply_runtime_response_headers(response, request, elapsed_ms)
        if (
            elapsed_ms >= _slow_request_ms_threshold()
            or _env_flag("API_LOG_ALL_REQUESTS", False)
            or status_code >= 500
        ):
            logger.warning(
                "slow_api_request method=%s path=%s status=%s elapsed_ms=%.2f query=%s correlation=%s client=%s exception=%s",
                request.method,
                request.url.path,
                status_code,
                elapsed_ms,
                request.url.query,
                _correlation_id(request),
                _client_identity(request),
                exc_name or "none",
            )
