"""Wall-clock helpers shared by the storage and sync layers."""

import time
from collections.abc import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)
