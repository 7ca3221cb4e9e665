import time
import logging
import structlog
from fastapi import FastAPI, Request
from sqlalchemy import text

from .infrastructure.db import engine
from .infrastructure.models import Base
from .infrastructure.metrics import metrics_endpoint, http_requests_total, http_request_duration_seconds
from .interfaces.http.routers import courses as courses_router
from .interfaces.http.routers import progress as progress_router
from .config import settings

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

app = FastAPI(title="Lessons Service", version="0.1.0")
app.include_router(courses_router.router)
app.include_router(progress_router.router)


def _endpoint_label(request: Request) -> str:
    # "/api/courses/{course_id}/lessons" rather than one label per course
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


@app.middleware("http")
async def observe_request(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    endpoint = _endpoint_label(request)
    http_requests_total.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
    http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(elapsed)
    logger.info(
        "http_request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(elapsed * 1000, 2),
    )
    return response


@app.on_event("startup")
def provision_schema():
    Base.metadata.create_all(bind=engine)
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("lessons_service_started", database=engine.url.render_as_string(hide_password=True))


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    """Prometheus metrics endpoint"""
    return metrics_endpoint()
