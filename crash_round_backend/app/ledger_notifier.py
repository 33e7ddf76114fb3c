# crash_round_backend/app/ledger_notifier.py

import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx

from app.settings import LEDGER_WEBHOOK_ENABLED, LEDGER_WEBHOOK_URL

logger = logging.getLogger("uvicorn.error")

_last_error: Optional[str] = None
# Strong references to in-flight webhook tasks until they finish.
_pending_tasks: Set[asyncio.Task] = set()


def ledger_status() -> Dict[str, Any]:
    return {
        "enabled": LEDGER_WEBHOOK_ENABLED,
        "url": LEDGER_WEBHOOK_URL or None,
        "last_error": _last_error,
    }


async def notify_round_settled(
    settled: Dict[str, Any],
    *,
    url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """
    POSTs one settled round {roundId, crashTarget, multiplier, timestamp} to the
    ledger service, which settles bets on its side. Failures are logged and
    swallowed; the round timeline never waits on the ledger.
    """
    global _last_error

    target = url or LEDGER_WEBHOOK_URL
    if not target:
        return False
    try:
        async with httpx.AsyncClient(timeout=5.0, transport=transport) as client:
            resp = await client.post(target, json=settled)
            if resp.status_code >= 400:
                _last_error = f"status={resp.status_code}"
                logger.warning(f"[LEDGER] settle {settled.get('roundId')} failed: status={resp.status_code} body={resp.text!r}")
                return False
    except Exception as e:
        _last_error = f"{type(e).__name__}: {e}"
        logger.warning(f"[LEDGER] settle {settled.get('roundId')} exception: {e}")
        return False
    return True


def schedule_round_settled(settled: Dict[str, Any]) -> None:
    """Crash listener: fires the webhook on its own task."""
    if not LEDGER_WEBHOOK_ENABLED:
        return
    task = asyncio.create_task(notify_round_settled(settled))
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)
