# crash_round_backend/app/main.py

import asyncio
import hmac
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Body, Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import settings
from app.exceptions import CrashGameException, Unauthorized
from app.game_logic import build_generator
from app.history import HistoryRing
from app.ledger_notifier import ledger_status, schedule_round_settled
from app.outcome_queue import OutcomeQueue
from app.scheduler import RoundScheduler
from app.ws_manager import BroadcastHub

logger = logging.getLogger("uvicorn.error")


def build_scheduler(**overrides) -> RoundScheduler:
    """Wires generator, queue, history and hub from settings into one scheduler."""
    queue = OutcomeQueue(
        build_generator(settings.CRASH_ALGORITHM, settings.REPLAY_POOL),
        min_depth=settings.QUEUE_MIN_DEPTH,
    )
    options = dict(
        wait_ms=settings.WAIT_MS,
        crash_pause_ms=settings.CRASH_PAUSE_MS,
        tick_ms=settings.TICK_MS,
        heartbeat_ms=settings.HEARTBEAT_MS,
        growth_rate=settings.GROWTH_RATE,
        exponent=settings.GROWTH_EXPONENT,
        peek_size=settings.QUEUE_PEEK,
        expose_crash_target=settings.EXPOSE_CRASH_TARGET,
    )
    options.update(overrides)
    sched = RoundScheduler(
        queue,
        HistoryRing(settings.HISTORY_SIZE),
        BroadcastHub(settings.OBSERVER_QUEUE_SIZE),
        **options,
    )
    sched.crash_listeners.append(schedule_round_settled)
    return sched


scheduler = build_scheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await scheduler.start()
    logger.info(f"Round scheduler started: algorithm={scheduler.queue.algorithm_key} expose_target={scheduler.expose_crash_target}")
    try:
        yield
    finally:
        await scheduler.stop()
        logger.info("Round scheduler stopped.")


app = FastAPI(title="Crash Round Backend", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CrashGameException)
async def crash_game_exception_handler(request: Request, exc: CrashGameException):
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": str(exc)})


def _key_matches(given: Optional[str]) -> bool:
    if not settings.ADMIN_KEY or not given:
        return False
    return hmac.compare_digest(given.encode(), settings.ADMIN_KEY.encode())


def require_admin(x_admin_key: Optional[str] = Header(None)) -> None:
    if not settings.ADMIN_KEY:
        raise Unauthorized("Admin access is disabled (CRASH_ADMIN_KEY not set)")
    if not _key_matches(x_admin_key):
        logger.warning("[ADMIN] rejected request with a missing or wrong admin key")
        raise Unauthorized("Invalid admin key")


# ---- Public ----

@app.get("/health")
@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/game/state")
async def game_state(x_admin_key: Optional[str] = Header(None)):
    privileged = False
    if x_admin_key is not None:
        require_admin(x_admin_key)
        privileged = True
    return await scheduler.snapshot(privileged=privileged)


@app.post("/api/game/bet")
async def place_bet(data: dict = Body(...)):
    bet = await scheduler.place_bet(data.get("amount"))
    return {"ok": True, **bet}


@app.post("/api/game/cashout")
async def cash_out(data: dict = Body(...)):
    result = await scheduler.cash_out(data.get("amount"))
    return {"ok": True, **result}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    hub = scheduler.hub
    observer = await scheduler.connect_observer()
    logger.info(f"[WS] observer {observer.id} connected ({len(hub)} total).")

    # An evicted observer's pump closes the socket, which ends the receive loop.
    pump = asyncio.create_task(hub.pump(observer, websocket))
    try:
        while True:
            data = await websocket.receive_json()
            msg_type = data.get("type") if isinstance(data, dict) else None
            if msg_type == "sync":
                hub.send_to(observer, {"type": "state", "data": await scheduler.snapshot()})
            elif msg_type == "ping":
                hub.send_to(observer, {"type": "pong", "data": {"serverTime": scheduler.now_ms()}})
    except WebSocketDisconnect:
        logger.info(f"[WS] observer {observer.id} disconnected.")
    except Exception as e:
        logger.warning(f"[WS] observer {observer.id} receive error: {e}")
    finally:
        pump.cancel()
        hub.unsubscribe(observer)


# ---- Admin ----

@app.get("/api/admin/queue", dependencies=[Depends(require_admin)])
async def admin_peek_queue(n: int = Query(settings.QUEUE_PEEK, ge=1, le=100)):
    return {"ok": True, "queue": await scheduler.peek_queue(n)}


@app.post("/api/admin/queue", dependencies=[Depends(require_admin)])
async def admin_inject_queue(data: dict = Body(...)):
    injected = await scheduler.inject_queue(data.get("values"))
    return {
        "ok": True,
        "injected": [o.multiplier for o in injected],
        "queue": await scheduler.peek_queue(scheduler.queue.min_depth),
    }


@app.post("/api/admin/force-crash", dependencies=[Depends(require_admin)])
async def admin_force_crash(data: dict = Body(...)):
    value = data.get("multiplier", data.get("at"))
    entry = await scheduler.force_crash(value)
    return {"ok": True, "roundId": entry.id, "crashed_at": entry.multiplier}


@app.post("/api/admin/crash-pool", dependencies=[Depends(require_admin)])
async def admin_crash_pool(data: dict = Body(...)):
    pool = await scheduler.replace_pool(data.get("pool"))
    return {"ok": True, "pool": pool}


@app.get("/api/admin/ledger-status", dependencies=[Depends(require_admin)])
def admin_ledger_status():
    return ledger_status()


if __name__ == "__main__":
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
