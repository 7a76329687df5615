"""
Epoch-millisecond time helpers
"""

import time
from typing import Callable

Clock = Callable[[], int]

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS


def now_ms() -> int:
    return int(time.time() * 1000)


def format_ms(epoch_ms: int) -> str:
    """Human readable timestamp for notification text"""
    if not epoch_ms:
        return "N/A"
    return time.strftime("%b %d, %Y at %I:%M %p", time.localtime(epoch_ms / 1000))
