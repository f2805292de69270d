"""Identifier helpers."""

import secrets
import string

from cropcare.core.timeutils import Clock, now_ms

BASE36 = string.digits + string.ascii_lowercase


def random_suffix(length: int = 9) -> str:
    """Random lowercase base36 string."""
    return "".join(secrets.choice(BASE36) for _ in range(length))


def timestamped_id(clock: Clock = now_ms, prefix: str | None = None) -> str:
    """``<epoch_ms>_<random>``, optionally prefixed."""
    value = f"{clock()}_{random_suffix()}"
    return f"{prefix}_{value}" if prefix else value
