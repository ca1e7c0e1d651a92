# backend/possync/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/possync.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///possync.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Real-time fan-out: per-session mailbox size and SSE keepalive interval
    BROADCAST_QUEUE_SIZE = int(os.environ.get("BROADCAST_QUEUE_SIZE", "100"))
    EVENT_STREAM_HEARTBEAT_SECONDS = float(os.environ.get("EVENT_STREAM_HEARTBEAT_SECONDS", "15"))

    # Retries for internal (unconditional) writes hitting lock/staleness errors
    WRITE_RETRY_ATTEMPTS = int(os.environ.get("WRITE_RETRY_ATTEMPTS", "3"))

    # Overlap subtracted from the syncTime handed to devices. A ledger row is
    # stamped at flush and becomes visible at commit; any write transaction
    # shorter than this window is re-delivered on the next sync instead of
    # skipped. Devices drop repeats by ledger entry id.
    SYNC_CHECKPOINT_LAG_SECONDS = float(os.environ.get("SYNC_CHECKPOINT_LAG_SECONDS", "5"))
