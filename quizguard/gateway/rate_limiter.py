"""Per-session Rate Limiter: quotas, cooldown and concurrency governor.

Tracks, for every caller session:
  - API calls per fixed window (default 20/hour)
  - File-processing operations per fixed window (default 20/hour)
  - Cooldown between quiz generations (default 10s)
  - Concurrent in-flight requests (default 3)

Windows are fixed, not sliding: a window's counter resets to zero once the
window duration has elapsed since it started. It deters abuse rather than
doing precise accounting.

State transitions are guarded by a threading.Lock so one limiter can be
shared between request handlers.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

from quizguard.core.exceptions import ConcurrencyLimitExceeded, CooldownActive, QuotaExceeded
from quizguard.core.metrics import RATE_LIMIT_REJECTIONS
from quizguard.gateway.types import RateLimitConfig

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    """Quota-counted resources."""

    API_CALLS = "api_calls"
    FILE_PROCESSING = "file_processing"


_RESOURCE_LABELS = {
    ResourceKind.API_CALLS: "API calls",
    ResourceKind.FILE_PROCESSING: "file processing operations",
}


@dataclass
class RateWindow:
    """Fixed window counter for one session × resource."""

    limit: int
    window_duration: float
    window_start: float
    count: int = 0

    def roll(self, now: float) -> None:
        """Start a fresh window if the current one has elapsed."""
        if now - self.window_start >= self.window_duration:
            self.count = 0
            self.window_start = now

    def reset_in(self, now: float) -> float:
        return max(0.0, self.window_start + self.window_duration - now)


@dataclass
class ConcurrencyCounter:
    max: int
    current: int = 0


@dataclass
class CooldownTimer:
    cooldown_duration: float
    last_action_time: float | None = None

    def remaining(self, now: float) -> float:
        if self.last_action_time is None:
            return 0.0
        return max(0.0, self.cooldown_duration - (now - self.last_action_time))


class RateLimiter:
    """Per-session rate limiter.

    Usage:
        limiter = RateLimiter()

        limiter.record_quiz_generation(session_id)      # CooldownActive
        with limiter.concurrent_slot(session_id):       # ConcurrencyLimitExceeded
            limiter.record_api_call(session_id)         # QuotaExceeded
            ...
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._windows: dict[tuple[str, ResourceKind], RateWindow] = {}
        self._concurrency: dict[str, ConcurrencyCounter] = {}
        self._cooldowns: dict[str, CooldownTimer] = {}
        self._lock = threading.Lock()

    # -- internal accessors (call with lock held) --------------------------

    def _limit_for(self, kind: ResourceKind) -> int:
        if kind == ResourceKind.API_CALLS:
            return self.config.api_calls_limit
        return self.config.file_processing_limit

    def _get_window(self, session_id: str, kind: ResourceKind, now: float) -> RateWindow:
        key = (session_id, kind)
        if key not in self._windows:
            self._windows[key] = RateWindow(
                limit=self._limit_for(kind),
                window_duration=self.config.window_seconds,
                window_start=now,
            )
        window = self._windows[key]
        window.roll(now)
        return window

    def _get_counter(self, session_id: str) -> ConcurrencyCounter:
        if session_id not in self._concurrency:
            self._concurrency[session_id] = ConcurrencyCounter(max=self.config.max_concurrent)
        return self._concurrency[session_id]

    def _get_cooldown(self, session_id: str) -> CooldownTimer:
        if session_id not in self._cooldowns:
            self._cooldowns[session_id] = CooldownTimer(cooldown_duration=self.config.generation_cooldown)
        return self._cooldowns[session_id]

    # -- quotas ------------------------------------------------------------

    def _record(self, session_id: str, kind: ResourceKind) -> int:
        with self._lock:
            now = self._clock()
            window = self._get_window(session_id, kind, now)

            if window.count >= window.limit:
                reset_in = window.reset_in(now)
                RATE_LIMIT_REJECTIONS.labels(reason=kind.value).inc()
                logger.warning("Session quota exhausted for %s (%d/%d)", kind.value, window.count, window.limit)
                raise QuotaExceeded(
                    f"Rate limit exceeded: maximum {window.limit} {_RESOURCE_LABELS[kind]} "
                    f"per {_format_duration(window.window_duration)}. "
                    f"Please try again in {math.ceil(reset_in / 60)} minute(s).",
                    resource=kind.value,
                    reset_in_seconds=reset_in,
                )

            window.count += 1
            return window.limit - window.count

    def record_api_call(self, session_id: str) -> int:
        """Count one provider API call. Returns the calls remaining in the window."""
        return self._record(session_id, ResourceKind.API_CALLS)

    def record_file_processing(self, session_id: str) -> int:
        """Count one file-processing operation. Returns the operations remaining."""
        return self._record(session_id, ResourceKind.FILE_PROCESSING)

    # -- cooldown ----------------------------------------------------------

    def record_quiz_generation(self, session_id: str) -> None:
        """Stamp a generation, or raise CooldownActive if the last one was too recent."""
        with self._lock:
            now = self._clock()
            timer = self._get_cooldown(session_id)
            remaining = timer.remaining(now)

            if remaining > 0:
                RATE_LIMIT_REJECTIONS.labels(reason="cooldown").inc()
                raise CooldownActive(
                    f"Please wait {math.ceil(remaining)} second(s) before generating another quiz.",
                    remaining_seconds=remaining,
                )

            timer.last_action_time = now

    def cooldown_remaining(self, session_id: str) -> float:
        """Seconds until the session may generate again (0 if it may now)."""
        with self._lock:
            return self._get_cooldown(session_id).remaining(self._clock())

    # -- concurrency -------------------------------------------------------

    def increment_concurrent(self, session_id: str) -> None:
        with self._lock:
            counter = self._get_counter(session_id)
            if counter.current >= counter.max:
                RATE_LIMIT_REJECTIONS.labels(reason="concurrency").inc()
                raise ConcurrencyLimitExceeded(
                    f"Too many concurrent requests (maximum {counter.max}). "
                    "Please wait for a running request to finish."
                )
            counter.current += 1

    def decrement_concurrent(self, session_id: str) -> None:
        with self._lock:
            counter = self._get_counter(session_id)
            counter.current = max(0, counter.current - 1)

    @contextmanager
    def concurrent_slot(self, session_id: str) -> Iterator[None]:
        """Hold one concurrency slot; released on every exit path."""
        self.increment_concurrent(session_id)
        try:
            yield
        finally:
            self.decrement_concurrent(session_id)

    # -- observability -----------------------------------------------------

    def get_status(self, session_id: str) -> dict:
        """Snapshot of every limit for one session."""
        with self._lock:
            now = self._clock()
            status: dict = {}

            for kind in ResourceKind:
                window = self._get_window(session_id, kind, now)
                status[kind.value] = {
                    "used": window.count,
                    "limit": window.limit,
                    "remaining": max(0, window.limit - window.count),
                    "reset_in_minutes": math.ceil(window.reset_in(now) / 60),
                }

            remaining = self._get_cooldown(session_id).remaining(now)
            status["quiz_generation"] = {
                "can_generate": remaining <= 0,
                "remaining_seconds": remaining,
            }

            counter = self._get_counter(session_id)
            status["concurrent"] = {"current": counter.current, "limit": counter.max}
            return status

    def reset_all(self, session_id: str | None = None) -> None:
        """Drop limiter state for one session, or for every session."""
        with self._lock:
            if session_id is None:
                self._windows.clear()
                self._concurrency.clear()
                self._cooldowns.clear()
                return

            for key in [k for k in self._windows if k[0] == session_id]:
                del self._windows[key]
            self._concurrency.pop(session_id, None)
            self._cooldowns.pop(session_id, None)


def _format_duration(seconds: float) -> str:
    if seconds % 3600 == 0:
        hours = int(seconds // 3600)
        return "hour" if hours == 1 else f"{hours} hours"
    if seconds % 60 == 0:
        return f"{int(seconds // 60)} minutes"
    return f"{seconds:g} seconds"
