from contextlib import asynccontextmanager
from typing import Callable, Optional
from uuid import UUID
import asyncio
import logging
import random
import sqlite3
import time

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend.app.auth import optional_user, require_user
from backend.app.config import settings
from backend.app.db import connect, get_conn, init_db
from backend.app.errors import EngagementError
from backend.app.logging_setup import setup_logging
from backend.engagement.allocation import allocate_variant
from backend.engagement.analytics import snippet_analytics
from backend.engagement.dedup import Deduplicator, MemoryDedupStore, SqliteDedupStore
from backend.engagement.experiments import (
    conclude_test,
    create_variant,
    deactivate_variant,
    get_test,
    start_test,
)
from backend.engagement.ingest import track_event
from backend.engagement.models import MetricName, Rail, TrackableKind
from backend.engagement.rollups import refresh_trending_scores
from backend.engagement.trending import DEFAULT_LIMIT, get_rail

setup_logging(settings.log_level, settings.engagement_log_level)

logger = logging.getLogger(__name__)


def build_deduplicator() -> Deduplicator:
    retention = 2 * max(settings.play_start_dedup_seconds, settings.toggle_throttle_seconds)
    if settings.dedup_backend == "sqlite":
        store = SqliteDedupStore(connect)
    else:
        store = MemoryDedupStore(
            sweep_threshold=settings.dedup_sweep_threshold,
            max_entries=settings.dedup_max_entries,
            max_age=retention,
        )
    return Deduplicator(
        store,
        play_start_window=settings.play_start_dedup_seconds,
        toggle_window=settings.toggle_throttle_seconds,
    )


def _refresh_trending_once() -> int:
    conn = connect()
    try:
        return refresh_trending_scores(
            conn,
            now=app.state.clock(),
            window_hours=settings.trending_window_hours,
            half_life_hours=settings.trending_half_life_hours,
        )
    finally:
        conn.close()


async def _every(interval: float, job: Callable[[], object], name: str) -> None:
    # jobs touch sqlite, keep them off the event loop
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(job)
        except Exception:
            logger.exception("Background job %s failed", name)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ensure DB exists
    conn = connect()
    init_db(conn)
    conn.close()

    app.state.clock = time.time
    app.state.rng = random.Random()
    app.state.deduplicator = build_deduplicator()

    tasks = []
    if settings.dedup_sweep_interval_seconds > 0:
        tasks.append(asyncio.create_task(_every(
            settings.dedup_sweep_interval_seconds,
            lambda: app.state.deduplicator.sweep(app.state.clock()),
            "dedup-sweep",
        )))
    if settings.trending_refresh_interval_seconds > 0:
        # for_you reads the rollup table, fill it before serving
        try:
            n = await asyncio.to_thread(_refresh_trending_once)
            logger.info("Initial trending refresh: %d snippets scored", n)
        except Exception:
            logger.exception("Initial trending refresh failed")
        tasks.append(asyncio.create_task(_every(
            settings.trending_refresh_interval_seconds,
            _refresh_trending_once,
            "trending-refresh",
        )))

    yield

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    lifespan=lifespan,
)

if settings.cors_origins_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=["*"],
        allow_headers=["authorization", "content-type"],
    )


@app.exception_handler(EngagementError)
async def engagement_error_handler(request: Request, exc: EngagementError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": "Invalid input", "errors": jsonable_errors(exc)})


@app.exception_handler(sqlite3.Error)
async def storage_error_handler(request: Request, exc: sqlite3.Error):
    logger.error("Storage error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Storage error"})


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(e.get("loc", ())), "msg": str(e.get("msg", "")), "type": str(e.get("type", ""))}
        for e in exc.errors()
    ]


@app.get("/health")
def health():
    return {"status": "ok", "app": settings.app_name, "env": settings.app_env}


@app.get("/")
def root():
    return {"message": "Snippet engagement API is running", "docs": "/docs", "health": "/health"}


# Event tracking
class TrackEventIn(BaseModel):
    content_id: UUID
    event_kind: TrackableKind
    variant_id: Optional[UUID] = None
    ms_played: Optional[int] = Field(default=None, ge=0)
    session_id: Optional[UUID] = None


@app.post("/track")
def track(
    ev: TrackEventIn,
    user_id: str = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
):
    result = track_event(
        conn,
        app.state.deduplicator,
        user_id=user_id,
        content_id=str(ev.content_id),
        event_kind=ev.event_kind.value,
        now=app.state.clock(),
        variant_id=str(ev.variant_id) if ev.variant_id else None,
        ms_played=ev.ms_played,
        session_id=str(ev.session_id) if ev.session_id else None,
    )
    return result.to_response()


# Variant allocation
class AllocateIn(BaseModel):
    content_id: UUID


@app.post("/allocate-variant")
def allocate(
    body: AllocateIn,
    user_id: Optional[str] = Depends(optional_user),
    conn: sqlite3.Connection = Depends(get_conn),
):
    allocation = allocate_variant(
        conn,
        content_id=str(body.content_id),
        user_id=user_id,
        now=app.state.clock(),
        rng=app.state.rng,
        sticky=settings.allocation_sticky,
    )
    return allocation.to_response()


# Trending rails
class TrendingIn(BaseModel):
    rail: str = Rail.FOR_YOU.value
    limit: int = DEFAULT_LIMIT
    genre: Optional[str] = None


def _rail_response(conn: sqlite3.Connection, q: TrendingIn, user_id: Optional[str]):
    snippets = get_rail(
        conn,
        rail=q.rail,
        now=app.state.clock(),
        limit=q.limit,
        genre=q.genre or None,
        user_id=user_id,
        new_rail_days=settings.new_rail_days,
        underground_view_threshold=settings.underground_view_threshold,
        max_per_creator=settings.max_per_creator,
        candidate_pool_factor=settings.candidate_pool_factor,
    )
    return {"snippets": [s.to_dict() for s in snippets], "rail": q.rail}


@app.get("/trending")
def trending(
    rail: str = Query(Rail.FOR_YOU.value),
    limit: int = Query(DEFAULT_LIMIT),
    genre: Optional[str] = Query(default=None),
    user_id: Optional[str] = Depends(optional_user),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return _rail_response(conn, TrendingIn(rail=rail, limit=limit, genre=genre), user_id)


@app.post("/trending")
def trending_post(
    q: TrendingIn,
    user_id: Optional[str] = Depends(optional_user),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return _rail_response(conn, q, user_id)


# Variants
class VariantIn(BaseModel):
    label: Optional[str] = Field(default=None, max_length=32)


@app.post("/snippets/{snippet_id}/variants", status_code=201)
def add_variant(
    snippet_id: UUID,
    body: VariantIn,
    user_id: str = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
):
    variant = create_variant(conn, user_id, str(snippet_id), now=app.state.clock(), label=body.label)
    return {
        "id": variant.id,
        "parent_content_id": variant.parent_content_id,
        "label": variant.label,
        "is_active": variant.is_active,
    }


@app.post("/variants/{variant_id}/deactivate")
def disable_variant(
    variant_id: UUID,
    user_id: str = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
):
    variant = deactivate_variant(conn, user_id, str(variant_id))
    return {"id": variant.id, "is_active": variant.is_active}


# A/B tests
class StartTestIn(BaseModel):
    content_id: UUID
    variant_a_id: Optional[UUID] = None
    variant_b_id: Optional[UUID] = None
    metric_name: MetricName = MetricName.COMPLETION_RATE
    test_duration_days: int = Field(14, ge=1, le=90)


@app.post("/ab-tests", status_code=201)
def create_test(
    body: StartTestIn,
    user_id: str = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
):
    test = start_test(
        conn,
        user_id=user_id,
        content_id=str(body.content_id),
        variant_a_id=str(body.variant_a_id) if body.variant_a_id else None,
        variant_b_id=str(body.variant_b_id) if body.variant_b_id else None,
        metric_name=body.metric_name,
        test_duration_days=body.test_duration_days,
        now=app.state.clock(),
    )
    return test.to_dict()


class ConcludeTestIn(BaseModel):
    test_id: UUID


@app.post("/ab-tests/conclude")
def conclude(
    body: ConcludeTestIn,
    user_id: str = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
):
    result = conclude_test(conn, user_id=user_id, test_id=str(body.test_id), now=app.state.clock())
    return result.to_response()


@app.get("/ab-tests/{test_id}")
def read_test(
    test_id: UUID,
    user_id: str = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return get_test(conn, user_id=user_id, test_id=str(test_id)).to_dict()


# Analytics
@app.get("/analytics/snippets/{snippet_id}")
def analytics_for_snippet(
    snippet_id: UUID,
    user_id: str = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return snippet_analytics(conn, user_id=user_id, content_id=str(snippet_id))
