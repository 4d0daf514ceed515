import os
import asyncio
import logging
from datetime import datetime, timezone
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import and_, or_
from signage.db import Base, engine, ensure_sqlite_schema
from signage.db import SessionLocal
from signage.api import group, override, playlist, schedule, screen, slide
from signage.models.screen import Screen, ScreenGroup
from signage.services.invalidation import bus, targets_closure
from signage.services.realtime import hub

logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)
ensure_sqlite_schema()

API_KEY = os.getenv("SIGNAGE_API_KEY", "").strip()
OVERRIDE_SWEEP_SEC = int(os.getenv("SIGNAGE_OVERRIDE_SWEEP_SEC", "5"))
QUIET_ACCESS_LOG = os.getenv("SIGNAGE_QUIET_ACCESS_LOG", "1").strip().lower() in {"1", "true", "yes", "on"}
QUIET_WEBSOCKET_LOG = os.getenv("SIGNAGE_QUIET_WEBSOCKET_LOG", "1").strip().lower() in {"1", "true", "yes", "on"}
_override_watch_task: asyncio.Task | None = None

if QUIET_ACCESS_LOG:
    # Keep warning/error lines, suppress normal access noise (200/201 etc).
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

if QUIET_WEBSOCKET_LOG:
    logging.getLogger("websockets").setLevel(logging.CRITICAL)
    logging.getLogger("uvicorn.protocols.websockets").setLevel(logging.CRITICAL)


def urgent_boundary_targets(db, since: datetime, until: datetime) -> list[tuple[str, str]]:
    """Targets whose urgent override started or expired in ``(since, until]`` (naive UTC)."""
    targets: list[tuple[str, str]] = []
    for target_type, model in (("screen", Screen), ("group", ScreenGroup)):
        rows = (
            db.query(model.id)
            .filter(
                model.urgent_slide_id.isnot(None),
                or_(
                    and_(model.urgent_starts_at > since, model.urgent_starts_at <= until),
                    and_(model.urgent_expires_at > since, model.urgent_expires_at <= until),
                ),
            )
            .all()
        )
        targets.extend((target_type, str(row[0])) for row in rows)
    return sorted(targets)


async def _override_boundary_watcher() -> None:
    # Stored urgent pointers are never cleared here; players filter at read time.
    last_sweep = datetime.now(timezone.utc).replace(tzinfo=None)
    while True:
        await asyncio.sleep(OVERRIDE_SWEEP_SEC)
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        events = []
        db = SessionLocal()
        try:
            targets = urgent_boundary_targets(db, last_sweep, now)
            if targets:
                events = targets_closure(db, targets)
        except Exception:
            logger.exception("urgent override sweep failed")
            db.rollback()
        finally:
            db.close()
        last_sweep = now

        if events:
            await bus.publish_batch(events)


app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
def root():
    return {
        "ok": True,
        "service": "signage-engine",
        "time_utc": datetime.now(timezone.utc).isoformat(),
        "docs": "/docs",
    }

@app.get("/healthz")
def healthz():
    return {"ok": True, "revision": bus.revision, "realtime_clients": hub.client_count}


@app.websocket("/ws/updates")
async def ws_updates(websocket: WebSocket, targets: str = ""):
    await hub.connect(websocket, [item for item in targets.split(",") if item.strip()])
    try:
        while True:
            await hub.handle_message(websocket, await websocket.receive_text())
    except WebSocketDisconnect:
        await hub.disconnect(websocket)
    except Exception:
        await hub.disconnect(websocket)


@app.on_event("startup")
async def startup_events() -> None:
    global _override_watch_task
    if _override_watch_task is None or _override_watch_task.done():
        _override_watch_task = asyncio.create_task(_override_boundary_watcher())


@app.on_event("shutdown")
async def shutdown_events() -> None:
    global _override_watch_task
    if _override_watch_task is not None:
        _override_watch_task.cancel()
        try:
            await _override_watch_task
        except asyncio.CancelledError:
            pass
        _override_watch_task = None

@app.middleware("http")
async def api_key_middleware(request: Request, call_next):
    if not API_KEY:
        return await call_next(request)
    path = request.url.path
    if path.startswith("/docs") or path.startswith("/openapi.json") or path.startswith("/redoc") or path == "/healthz":
        return await call_next(request)
    if request.headers.get("X-API-Key") != API_KEY:
        return JSONResponse({"detail": "Unauthorized"}, status_code=401)
    return await call_next(request)

app.include_router(screen.router)
app.include_router(group.router)
app.include_router(slide.router)
app.include_router(playlist.router)
app.include_router(schedule.router)
app.include_router(override.router)
