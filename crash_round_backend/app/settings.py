# crash_round_backend/app/settings.py

import os

DEFAULT_REPLAY_POOL = (
    "2.31,1.74,4.12,23.75,2.88,19.11,1.52,25.66,3.41,26.7,1.98,25.05,6.77,"
    "20.91,2.14,17.4,42.93,3.65,24.35,1.88,18.5,5.22,31.2,2.07,27.8,1.63,"
    "22.1,8.14,35.6,2.55,19.9,3.9,28.3,1.77,15.8,7.3,44.1,2.2,21.7,4.5,"
    "17.8,1.91,33.4,3.1,26.1,2.44,38.9,5.8,24.8,1.55"
)

# Round timeline (milliseconds)
WAIT_MS = int(os.getenv("CRASH_WAIT_MS", "8000"))
CRASH_PAUSE_MS = int(os.getenv("CRASH_PAUSE_MS", "5000"))
TICK_MS = int(os.getenv("CRASH_TICK_MS", "100"))
HEARTBEAT_MS = int(os.getenv("CRASH_HEARTBEAT_MS", "10000"))

# Curve m(t) = 1 + k * t^p, t in seconds
GROWTH_RATE = float(os.getenv("CRASH_GROWTH_RATE", "0.0055"))
GROWTH_EXPONENT = float(os.getenv("CRASH_GROWTH_EXPONENT", "2.2"))

QUEUE_MIN_DEPTH = int(os.getenv("CRASH_QUEUE_MIN_DEPTH", "10"))
QUEUE_PEEK = int(os.getenv("CRASH_QUEUE_PEEK", "5"))
HISTORY_SIZE = int(os.getenv("CRASH_HISTORY_SIZE", "20"))

CRASH_ALGORITHM = os.getenv("CRASH_ALGORITHM", "weighted").strip().lower()
REPLAY_POOL = [float(v) for v in os.getenv("CRASH_REPLAY_POOL", DEFAULT_REPLAY_POOL).split(",") if v.strip()]

# Whether public payloads carry the upcoming crash target and queue.
EXPOSE_CRASH_TARGET = os.getenv("CRASH_EXPOSE_TARGET", "1") == "1"

ADMIN_KEY = os.getenv("CRASH_ADMIN_KEY", "").strip()

OBSERVER_QUEUE_SIZE = int(os.getenv("OBSERVER_QUEUE_SIZE", "256"))

LEDGER_WEBHOOK_ENABLED = os.getenv("LEDGER_WEBHOOK_ENABLED", "0") == "1"
LEDGER_WEBHOOK_URL = os.getenv("LEDGER_WEBHOOK_URL", "").strip()

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
