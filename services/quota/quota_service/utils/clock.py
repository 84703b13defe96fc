"""
ABOUTME: Wall-clock helpers shared by the quota core
ABOUTME: UTC datetimes for the store, epoch milliseconds for the admission controller
"""

import time
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def millis_between(start: datetime, end: datetime) -> int:
    """Non-negative milliseconds from start to end"""
    return max(0, int((end - start).total_seconds() * 1000))
