# crash_round_backend/app/ws_manager.py

import asyncio
import logging
import uuid
from typing import Optional

from fastapi import WebSocket

logger = logging.getLogger("uvicorn.error")

# Delivered in place of the backlog when an observer is evicted; ends its pump.
CLOSE = None

# "Try again later": the observer was evicted and may reconnect.
EVICTED_CLOSE_CODE = 1013


class Observer:
    """One connected stream consumer. Lives only as long as its connection."""

    def __init__(self, max_pending: int):
        self.id = uuid.uuid4().hex[:12]
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.closed = False

    def close(self) -> None:
        """Drops the backlog and wakes the pump with the close sentinel."""
        if self.closed:
            return
        self.closed = True
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(CLOSE)

    async def next_message(self) -> Optional[dict]:
        return await self.queue.get()


class BroadcastHub:
    """Fans every published event out to all subscribed observers, in publish order."""

    def __init__(self, max_pending: int = 256):
        if max_pending < 1:
            raise ValueError(f"max_pending must be at least 1, got {max_pending}")
        self.max_pending = max_pending
        self.observers: dict[str, Observer] = {}

    def __len__(self) -> int:
        return len(self.observers)

    def subscribe(self) -> Observer:
        observer = Observer(self.max_pending)
        self.observers[observer.id] = observer
        return observer

    def unsubscribe(self, observer: Observer) -> None:
        if self.observers.pop(observer.id, None) is not None:
            observer.close()

    def _deliver(self, observer: Observer, message: dict) -> None:
        if observer.closed:
            self.unsubscribe(observer)
            return
        try:
            observer.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.info(f"[WS] observer {observer.id} fell {self.max_pending} messages behind. Evicting.")
            self.unsubscribe(observer)

    def send_to(self, observer: Observer, message: dict) -> None:
        """Queues a message for a single observer."""
        self._deliver(observer, message)

    def publish(self, event: str, payload: dict) -> None:
        """Queues {"type": event, "data": payload} for every observer. Never blocks, never raises."""
        message = {"type": event, "data": payload}
        for observer in list(self.observers.values()):
            self._deliver(observer, message)

    async def pump(self, observer: Observer, websocket: WebSocket) -> None:
        """Drains one observer's queue into its websocket.

        Ends when the send fails or the observer is closed; a closed observer's
        socket is shut with EVICTED_CLOSE_CODE.
        """
        try:
            while True:
                message = await observer.next_message()
                if message is CLOSE:
                    await websocket.close(code=EVICTED_CLOSE_CODE, reason="Observer evicted")
                    break
                await websocket.send_json(message)
        except Exception as e:
            logger.info(f"[WS] send to observer {observer.id} failed: {e}. Disconnecting.")
        finally:
            self.unsubscribe(observer)
