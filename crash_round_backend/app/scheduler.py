# crash_round_backend/app/scheduler.py

import asyncio
import enum
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional

from app.exceptions import InvalidPhase
from app.game_logic import ReplayPoolGenerator, get_multiplier_at_time, parse_amount, parse_multiplier
from app.history import HistoryEntry, HistoryRing
from app.outcome_queue import OutcomeQueue
from app.ws_manager import BroadcastHub, Observer

logger = logging.getLogger("uvicorn.error")


class Phase(str, enum.Enum):
    WAITING = "WAITING"
    FLYING = "FLYING"
    CRASHED = "CRASHED"


@dataclass
class RoundState:
    """
    The one in-progress round. A new instance is created on every entry into
    WAITING; crash_target is set there and never reassigned afterwards.
    Timestamps are epoch milliseconds.
    """
    id: str
    phase: Phase
    multiplier: float
    crash_target: float
    started_at: Optional[int] = None
    next_event_at: Optional[int] = None

    def to_dict(self, expose_target: bool = True) -> dict:
        return {
            "id": self.id,
            "phase": self.phase.value,
            "multiplier": self.multiplier,
            "startedAt": self.started_at,
            "crashTarget": self.crash_target if expose_target else None,
            "nextEventAt": self.next_event_at,
        }


class RoundScheduler:
    """
    Drives rounds through WAITING -> FLYING -> CRASHED -> WAITING and publishes
    every transition to the broadcast hub.

    Only this class mutates the round, the outcome queue and the history ring.
    Timer callbacks and every outside caller (snapshots, admin writes, bet and
    cashout checks) go through `self.lock`, so nothing observes or changes state
    halfway through a transition.

    Each timer remembers the round id and phase it was armed for and does
    nothing if either changed by the time it fires. That is what makes an
    admin forced crash safe while a tick or flight timer is still pending.

    Timers are only armed between start() and stop(); a later start() picks
    the current round back up. The transition methods can also be called
    directly, which drives the state machine without an event loop.
    """

    def __init__(
        self,
        queue: OutcomeQueue,
        history: HistoryRing,
        hub: BroadcastHub,
        *,
        wait_ms: int = 8000,
        crash_pause_ms: int = 5000,
        tick_ms: int = 100,
        heartbeat_ms: int = 10000,
        growth_rate: float = 0.0055,
        exponent: float = 2.2,
        peek_size: int = 5,
        expose_crash_target: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.queue = queue
        self.history = history
        self.hub = hub
        self.wait_ms = wait_ms
        self.crash_pause_ms = crash_pause_ms
        self.tick_ms = tick_ms
        self.heartbeat_ms = heartbeat_ms
        self.growth_rate = growth_rate
        self.exponent = exponent
        self.peek_size = peek_size
        self.expose_crash_target = expose_crash_target
        self.clock = clock

        self.round: Optional[RoundState] = None
        self.lock = asyncio.Lock()
        # Called with the settled round dict after every crash.
        self.crash_listeners: List[Callable[[dict], None]] = []

        self._running = False
        self._tasks: set[asyncio.Task] = set()

    # ---- helpers ----

    def now_ms(self) -> int:
        return round(self.clock() * 1000)

    @property
    def running(self) -> bool:
        return self._running

    def multiplier_at(self, elapsed_ms: float) -> float:
        return get_multiplier_at_time(elapsed_ms / 1000, self.growth_rate, self.exponent)

    def _phase_name(self) -> str:
        return self.round.phase.value if self.round else "NOT_STARTED"

    def _require(self, phase: Phase, operation: str) -> RoundState:
        if self.round is None or self.round.phase != phase:
            raise InvalidPhase(operation, self._phase_name())
        return self.round

    def _is_current(self, round_id: str, phase: Phase) -> bool:
        return self.round is not None and self.round.id == round_id and self.round.phase == phase

    def _public_target(self) -> Optional[float]:
        return self.round.crash_target if self.expose_crash_target else None

    def _queue_view(self, expose: bool, n: Optional[int] = None) -> List[dict]:
        if not expose:
            return []
        outcomes = self.queue.peek(self.peek_size if n is None else n)
        return [{"position": i, **o.to_dict()} for i, o in enumerate(outcomes, start=1)]

    # ---- timers ----

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _arm(self, delay_ms: int, round_id: str, phase: Phase, transition: Callable[[], object]) -> None:
        if self._running:
            self._spawn(self._fire_after(delay_ms, round_id, phase, transition))

    async def _fire_after(self, delay_ms: int, round_id: str, phase: Phase, transition) -> None:
        await asyncio.sleep(delay_ms / 1000)
        async with self.lock:
            if not self._is_current(round_id, phase):
                logger.debug(f"[TIMER] stale {phase.value} timer for round {round_id[:8]} ignored")
                return
            transition()

    async def _tick_loop(self, round_id: str) -> None:
        while True:
            await asyncio.sleep(self.tick_ms / 1000)
            async with self.lock:
                if not self._is_current(round_id, Phase.FLYING):
                    logger.debug(f"[TIMER] stale tick timer for round {round_id[:8]} stopped")
                    return
                if not self.tick():
                    return

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_ms / 1000)
            async with self.lock:
                self.heartbeat()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        try:
            async with self.lock:
                self._resume()
        except Exception:
            self._running = False
            raise
        self._spawn(self._heartbeat_loop())

    def _resume(self) -> None:
        """Opens the first round, or re-arms the timeline where stop() left it."""
        r = self.round
        if r is None:
            self.begin_waiting()
            return
        logger.info(f"[TIMER] resuming round {r.id[:8]} in {r.phase.value}")
        if r.phase == Phase.FLYING:
            self._spawn(self._tick_loop(r.id))
        elif r.phase == Phase.WAITING:
            self._arm(max(0, r.next_event_at - self.now_ms()), r.id, r.phase, self.begin_flying)
        else:
            self._arm(max(0, r.next_event_at - self.now_ms()), r.id, r.phase, self.begin_waiting)

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # ---- transitions (caller holds the lock or owns the timeline) ----

    def begin_waiting(self) -> RoundState:
        if self.round is not None and self.round.phase != Phase.CRASHED:
            raise InvalidPhase("start a new round", self._phase_name())
        outcome = self.queue.consume_next()
        now = self.now_ms()
        self.round = RoundState(
            id=str(uuid.uuid4()),
            phase=Phase.WAITING,
            multiplier=1.0,
            crash_target=outcome.multiplier,
            next_event_at=now + self.wait_ms,
        )
        r = self.round
        self.hub.publish("round_start", {
            "roundId": r.id,
            "nextEventAt": r.next_event_at,
            "crashTarget": self._public_target(),
            "queueSnapshot": self._queue_view(self.expose_crash_target),
            "algorithmKey": self.queue.algorithm_key,
        })
        logger.info(f"[WAIT] {r.id[:8]} | crash @ {r.crash_target:.2f}x | fly in {self.wait_ms / 1000:g}s")
        self._arm(self.wait_ms, r.id, Phase.WAITING, self.begin_flying)
        return r

    def begin_flying(self) -> RoundState:
        r = self._require(Phase.WAITING, "start flying")
        r.phase = Phase.FLYING
        r.started_at = self.now_ms()
        r.next_event_at = None
        r.multiplier = 1.0
        self.hub.publish("fly", {
            "roundId": r.id,
            "startedAt": r.started_at,
            "crashTarget": self._public_target(),
            "algorithmKey": self.queue.algorithm_key,
        })
        logger.info(f"[FLY] {r.id[:8]} | target: {r.crash_target:.2f}x")
        if self._running:
            self._spawn(self._tick_loop(r.id))
        return r

    def tick(self) -> bool:
        """Recomputes the multiplier from elapsed time. Returns False once the round crashed."""
        r = self._require(Phase.FLYING, "tick")
        now = self.now_ms()
        elapsed_ms = now - r.started_at
        computed = self.multiplier_at(elapsed_ms)
        crossed = computed >= r.crash_target
        r.multiplier = max(r.multiplier, min(computed, r.crash_target))
        self.hub.publish("tick", {
            "roundId": r.id,
            "multiplier": r.multiplier,
            "elapsedMs": elapsed_ms,
            "crashTarget": self._public_target(),
            "timestamp": now,
        })
        if crossed:
            self.crash(r.multiplier)
            return False
        return True

    def crash(self, final: float) -> HistoryEntry:
        r = self._require(Phase.FLYING, "crash")
        now = self.now_ms()
        r.phase = Phase.CRASHED
        r.multiplier = final
        r.next_event_at = now + self.crash_pause_ms
        entry = HistoryEntry(id=r.id, multiplier=final, timestamp=now)
        self.history.record(entry)
        self.hub.publish("crash", {
            "roundId": r.id,
            "multiplier": final,
            "nextEventAt": r.next_event_at,
        })
        logger.info(f"[CRASH] {r.id[:8]} @ {final:.2f}x")
        self._notify_crash({
            "roundId": r.id,
            "crashTarget": r.crash_target,
            "multiplier": final,
            "timestamp": now,
        })
        self._arm(self.crash_pause_ms, r.id, Phase.CRASHED, self.begin_waiting)
        return entry

    def heartbeat(self) -> None:
        self.hub.publish("heartbeat", {
            "phase": self._phase_name(),
            "nextEventAt": self.round.next_event_at if self.round else None,
        })

    def _notify_crash(self, settled: dict) -> None:
        for listener in list(self.crash_listeners):
            try:
                listener(settled)
            except Exception as e:
                logger.warning(f"[CRASH] listener {listener!r} failed: {e}")

    # ---- outside callers ----

    async def force_crash(self, value) -> HistoryEntry:
        final = parse_multiplier(value, minimum=1.0, inclusive=True)
        async with self.lock:
            r = self._require(Phase.FLYING, "force a crash")
            logger.info(f"[ADMIN] forcing crash of {r.id[:8]} at {final:.2f}x (target was {r.crash_target:.2f}x)")
            return self.crash(final)

    async def inject_queue(self, values) -> list:
        async with self.lock:
            injected = self.queue.inject(values)
            logger.info(f"[ADMIN] injected {[o.multiplier for o in injected]} at the front of the queue")
            return injected

    async def replace_pool(self, values) -> List[float]:
        """Switches to (or stays on) the replay strategy with a new pool and rebuilds the queue."""
        async with self.lock:
            generator = self.queue.generator
            if isinstance(generator, ReplayPoolGenerator):
                generator.set_pool(values)
            else:
                generator = ReplayPoolGenerator(values)
            self.queue.set_generator(generator)
            logger.info(f"[ADMIN] crash pool updated: {generator.pool[:5]} ({len(generator.pool)} values)")
            return list(generator.pool)

    async def peek_queue(self, n: int) -> List[dict]:
        async with self.lock:
            return self._queue_view(True, n)

    def _snapshot(self, privileged: bool) -> dict:
        expose = privileged or self.expose_crash_target
        return {
            "serverTime": self.now_ms(),
            "round": self.round.to_dict(expose) if self.round else None,
            "history": [e.to_dict() for e in self.history.list()],
            "queue": self._queue_view(expose),
            "algorithmKey": self.queue.algorithm_key,
        }

    async def snapshot(self, privileged: bool = False) -> dict:
        async with self.lock:
            return self._snapshot(privileged)

    async def connect_observer(self) -> Observer:
        """Subscribes a new observer whose first message is the current state."""
        async with self.lock:
            observer = self.hub.subscribe()
            self.hub.send_to(observer, {"type": "state", "data": self._snapshot(False)})
            return observer

    def live_multiplier(self) -> float:
        r = self.round
        if r is None or r.phase != Phase.FLYING:
            return r.multiplier if r else 1.0
        return max(r.multiplier, self.multiplier_at(self.now_ms() - r.started_at))

    async def place_bet(self, amount) -> dict:
        stake = parse_amount(amount)
        async with self.lock:
            r = self._require(Phase.WAITING, "place a bet")
            self.hub.publish("bet_placed", {"roundId": r.id})
            return {"roundId": r.id, "amount": stake}

    async def cash_out(self, amount) -> dict:
        stake = parse_amount(amount)
        async with self.lock:
            r = self._require(Phase.FLYING, "cash out")
            multiplier = self.live_multiplier()
            if multiplier >= r.crash_target:
                raise InvalidPhase("cash out", "past its crash point")
            return {"roundId": r.id, "multiplier": multiplier, "payout": round(stake * multiplier, 2)}
