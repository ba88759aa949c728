"""In-process sliding-window limiter for login and signup attempts.

Attempts are tracked per key (``login:<email>``, ``signup:<ip>``) as a list of
monotonic timestamps. The table lives in process memory, so limits are per
instance; a multi-instance deployment needs a shared store instead.
"""

import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from config import get_settings
from errors import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after_seconds: int


class RateLimiter:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_keys: Optional[int] = None,
    ) -> None:
        self._clock = clock
        self._max_keys = max_keys or get_settings().rate_limit_max_keys
        self._attempts: "OrderedDict[str, list[float]]" = OrderedDict()
        self._lock = threading.Lock()

    def hit(self, key: str, max_attempts: int, window_secs: float) -> RateLimitResult:
        """Record an attempt for ``key`` unless its window is already full."""
        with self._lock:
            now = self._clock()
            window_start = now - window_secs
            recent = [t for t in self._attempts.get(key, ()) if t > window_start]

            if len(recent) >= max_attempts:
                self._store(key, recent)
                oldest = min(recent) if recent else now
                retry_after = max(1, math.ceil(oldest + window_secs - now))
                return RateLimitResult(
                    allowed=False, remaining=0, retry_after_seconds=retry_after
                )

            recent.append(now)
            self._store(key, recent)
            return RateLimitResult(
                allowed=True,
                remaining=max_attempts - len(recent),
                retry_after_seconds=0,
            )

    def check(self, key: str, max_attempts: int, window_secs: float) -> RateLimitResult:
        result = self.hit(key, max_attempts, window_secs)
        if not result.allowed:
            logger.warning(
                f"rate_limited: key={key.split(':', 1)[0]} "
                f"retry_after={result.retry_after_seconds}"
            )
            raise RateLimitExceeded(result.retry_after_seconds)
        return result

    def login(self, email: str) -> RateLimitResult:
        settings = get_settings()
        return self.check(
            f"login:{email.strip().lower()}",
            settings.login_max_attempts,
            settings.login_window_secs,
        )

    def signup(self, ip: str) -> RateLimitResult:
        settings = get_settings()
        return self.check(
            f"signup:{ip}",
            settings.signup_max_attempts,
            settings.signup_window_secs,
        )

    def reset(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._attempts.clear()

    def _store(self, key: str, attempts: list[float]) -> None:
        self._attempts[key] = attempts
        self._attempts.move_to_end(key)
        while len(self._attempts) > self._max_keys:
            self._attempts.popitem(last=False)


limiter = RateLimiter()
