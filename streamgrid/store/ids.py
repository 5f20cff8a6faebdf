from __future__ import annotations

import secrets
import string
import threading
import time
from datetime import datetime, timezone

_BASE36 = string.digits + string.ascii_lowercase

_lock = threading.Lock()
_last_grid_ms = 0


def now_ms() -> int:
    return int(time.time() * 1000)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_stream_id() -> str:
    """``stream-<epoch ms>-<9 base36 chars>``"""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"stream-{now_ms()}-{suffix}"


def new_grid_id() -> str:
    """``grid-<epoch ms>``, strictly increasing within the process."""
    global _last_grid_ms
    with _lock:
        ms = max(now_ms(), _last_grid_ms + 1)
        _last_grid_ms = ms
    return f"grid-{ms}"


def new_chat_id() -> str:
    return f"chat-{now_ms()}-{secrets.token_hex(3)}"
