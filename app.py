import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from dashboard_engine import config
from dashboard_engine.cache.ttl_config import describe
from dashboard_engine.context import get_context
from dashboard_engine.events import FILTERS_CHANGED

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
log = logging.getLogger("dash.app")

SWEEP_JOB_ID = "cache-sweep"

_scheduler: Optional[AsyncIOScheduler] = None


class ConnectionManager:
    def __init__(self):
        self.active: List[WebSocket] = []

    async def connect(self, ws: WebSocket):
        await ws.accept()
        self.active.append(ws)

    def disconnect(self, ws: WebSocket):
        self.active = [w for w in self.active if w != ws]

    async def broadcast(self, payload: dict):
        for ws in list(self.active):
            try:
                await ws.send_json(payload)
            except Exception as e:
                log.warning(f"WS send failed, dropping client: {e}")
                self.disconnect(ws)


manager = ConnectionManager()


def _push_filters(payload: dict):
    if not manager.active:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    loop.create_task(manager.broadcast({"event": FILTERS_CHANGED, **payload}))


async def _sweep():
    get_context().sweep()


def start_sweeper():
    global _scheduler
    if _scheduler is not None:
        log.warning("Cache sweeper already running, ignoring start call")
        return
    _scheduler = AsyncIOScheduler(timezone="UTC")
    _scheduler.add_job(
        _sweep,
        IntervalTrigger(seconds=config.CACHE_SWEEP_INTERVAL),
        id               = SWEEP_JOB_ID,
        name             = "Expired cache sweep",
        max_instances    = 1,
        replace_existing = True,
    )
    _scheduler.start()
    log.info(f"Cache sweeper live (every {config.CACHE_SWEEP_INTERVAL}s)")


def stop_sweeper():
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        log.info("Cache sweeper stopped")


@asynccontextmanager
async def lifespan(app: FastAPI):
    ctx = get_context()
    if ctx.persistent is not None:
        await ctx.persistent.get_redis()
    off = ctx.bus.on(FILTERS_CHANGED, _push_filters)
    start_sweeper()
    yield
    stop_sweeper()
    off()
    await ctx.aclose()


app = FastAPI(
    title="Ouvidoria Dashboard API",
    description="Filter coordination, cache policy and request loading for the ombudsman dashboard.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    ctx = get_context()
    redis = None
    if ctx.persistent is not None:
        redis = await ctx.persistent.get_redis()
    return {
        "status": "healthy",
        "redis": "connected" if redis else "unavailable (memory only)",
        "sweeper": _scheduler is not None,
        "timestamp": int(time.time()),
    }


# ── Cache ─────────────────────────────────────────────────────
@app.get("/api/cache/ttl", tags=["Cache"])
async def cache_ttl(key: str = Query(..., description="Endpoint or cache key, e.g. /api/unit/123")):
    if not key.strip():
        raise HTTPException(400, "key must not be empty")
    return describe(key)


@app.get("/api/cache/stats", tags=["Cache"])
async def cache_stats():
    ctx = get_context()
    return {
        "data_store":   ctx.store.get_stats(),
        "filter_cache": ctx.filter_cache.get_stats(),
        "timestamp":    int(time.time()),
    }


@app.delete("/api/cache", tags=["Cache"])
async def cache_clear(key: Optional[str] = Query(None, description="Single key; omit to clear all")):
    ctx = get_context()
    removed = ctx.store.invalidate(key)
    if key is None:
        ctx.filter_cache.invalidate()
    return {"removed": removed, "key": key}


# ── Filters ───────────────────────────────────────────────────
def _filters_response(changed: Optional[bool] = None) -> dict:
    filters = get_context().filters
    body = {
        "filters": filters.to_api_filters(),
        "count":   len(filters),
        "pending": filters.pending,
    }
    if changed is not None:
        body["changed"] = changed
    return body


@app.get("/api/filters", tags=["Filters"])
async def list_filters():
    return _filters_response()


@app.post("/api/filters", tags=["Filters"])
async def apply_filter(
    field: str = Query(...),
    value: str = Query(...),
    op: str = Query("eq"),
    multi_select: bool = Query(False),
    chart_id: Optional[str] = Query(None),
):
    changed = get_context().filters.apply(
        field, value, multi_select=multi_select, chart_id=chart_id, op=op,
    )
    return _filters_response(changed)


@app.post("/api/filters/toggle", tags=["Filters"])
async def toggle_filter(
    field: str = Query(...),
    value: str = Query(...),
    multi_select: bool = Query(False),
    chart_id: Optional[str] = Query(None),
):
    changed = get_context().filters.toggle(field, value, multi_select=multi_select, chart_id=chart_id)
    return _filters_response(changed)


@app.delete("/api/filters", tags=["Filters"])
async def remove_filters(
    field: Optional[str] = Query(None, description="Omit to clear every filter"),
    value: Optional[str] = Query(None),
):
    filters = get_context().filters
    if field is None:
        filters.clear()
        return _filters_response(True)
    return _filters_response(filters.remove(field, value))


@app.get("/api/filters/history", tags=["Filters"])
async def filter_history():
    history = get_context().history
    return {"recent": history.get_recent(), "favorites": history.get_favorites()}


@app.post("/api/filters/favorites", tags=["Filters"])
async def save_favorite(name: str = Query(..., description="Label for the current filter set")):
    ctx = get_context()
    if not name.strip():
        raise HTTPException(400, "name must not be empty")
    entry = ctx.history.save_favorite(ctx.filters.to_api_filters(), name.strip())
    if entry is None:
        raise HTTPException(400, "no active filters to save")
    return entry


@app.delete("/api/filters/favorites/{favorite_id}", tags=["Filters"])
async def remove_favorite(favorite_id: str):
    if not get_context().history.remove_favorite(favorite_id):
        raise HTTPException(404, f"Favourite '{favorite_id}' not found")
    return {"removed": favorite_id}


# ── Loader ────────────────────────────────────────────────────
@app.get("/api/loader/stats", tags=["Loader"])
async def loader_stats():
    return get_context().loader.get_queue_stats()


@app.websocket("/ws/filters")
async def websocket_filters(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        await websocket.send_json({"event": "filters:snapshot", **_filters_response()})
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        log.info("WS disconnected: filters")
    except Exception as e:
        log.error(f"WS error on filters: {e}")
    finally:
        manager.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=config.PORT, reload=False, log_level="info")
