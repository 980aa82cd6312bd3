from __future__ import annotations

import secrets
import time
import uuid


def now_ms() -> int:
    return int(time.time() * 1000)


def seconds_to_ms(seconds: float) -> int:
    return int(seconds * 1000)


def new_session_id() -> str:
    return str(uuid.uuid4())


def new_lock_token() -> str:
    """Single-use proof of lock ownership."""
    return secrets.token_urlsafe(24)
