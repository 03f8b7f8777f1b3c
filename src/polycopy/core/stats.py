"""Per-subscription pipeline counters."""

import threading
import time
from collections import Counter
from dataclasses import dataclass, field

COUNTERS = (
    "activity_received",
    "activity_matched",
    "trades_detected",
    "trades_executed",
    "trades_skipped",
    "trades_failed",
)


@dataclass
class RunStats:
    """Monotonic counters for one subscription.

    Stages mutate it through ``increment``/``record_skip``; reporters only see
    copies from ``snapshot``.
    """

    activity_received: int = 0
    activity_matched: int = 0
    trades_detected: int = 0
    trades_executed: int = 0
    trades_skipped: int = 0
    trades_failed: int = 0
    start_time: float = field(default_factory=time.time)
    last_activity: float | None = None
    skip_reasons: Counter = field(default_factory=Counter)

    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def increment(self, counter: str, n: int = 1):
        if counter not in COUNTERS:
            raise KeyError(f"unknown counter {counter!r}")
        with self._lock:
            setattr(self, counter, getattr(self, counter) + n)

    def record_activity(self, at: float | None = None):
        with self._lock:
            self.activity_received += 1
            self.last_activity = at if at is not None else time.time()

    def record_skip(self, reason: str):
        with self._lock:
            self.trades_skipped += 1
            self.skip_reasons[reason] += 1

    def running_seconds(self, now: float | None = None) -> float:
        return max(0.0, (now if now is not None else time.time()) - self.start_time)

    def snapshot(self) -> "RunStats":
        with self._lock:
            return RunStats(
                activity_received=self.activity_received,
                activity_matched=self.activity_matched,
                trades_detected=self.trades_detected,
                trades_executed=self.trades_executed,
                trades_skipped=self.trades_skipped,
                trades_failed=self.trades_failed,
                start_time=self.start_time,
                last_activity=self.last_activity,
                skip_reasons=Counter(self.skip_reasons),
            )

    def to_dict(self) -> dict:
        snap = self.snapshot()
        data = {name: getattr(snap, name) for name in COUNTERS}
        data["start_time"] = snap.start_time
        data["last_activity"] = snap.last_activity
        data["running_seconds"] = snap.running_seconds()
        data["skip_reasons"] = dict(snap.skip_reasons)
        return data
