"""
auth/clock.py -- Time source and delay strategy for the auth core.

Services never call datetime.now() or time.sleep() directly. They receive a
Clock so that lockout expiry, token expiry, and the credential-failure delay
can be driven deterministically in tests.

SystemClock.sleep() blocks the calling worker thread. The failure delay is a
security control, so it must not be skipped when the client disconnects --
a blocking sleep inside the threadpool handler satisfies that.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock UTC time and real blocking sleeps."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)
