"""Per-user fixed-window throttle for base avatar submissions."""

import logging
import math
import threading
import time
from typing import Callable, Dict

from app.errors import RateLimitedError

logger = logging.getLogger(__name__)


class SubmissionRateLimiter:
    """Accepts at most one submission per user per window.

    The last accepted timestamp is recorded at acceptance time, not when the
    job finishes, so a burst inside one window yields exactly one acceptance.
    State is process-local and lost on restart.
    """

    def __init__(
        self,
        window_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._window = window_seconds
        self._clock = clock
        self._last_accepted: Dict[str, float] = {}
        self._lock = threading.Lock()

    def check(self, user_id: str) -> None:
        """Record an accepted submission or raise RateLimitedError."""
        with self._lock:
            now = self._clock()
            last = self._last_accepted.get(user_id)
            if last is not None:
                elapsed = now - last
                if elapsed < self._window:
                    retry_after = max(1, math.ceil(self._window - elapsed))
                    logger.info(
                        "Submission throttled for user %s (retry after %ss)",
                        user_id,
                        retry_after,
                    )
                    raise RateLimitedError(
                        "Too many requests. Please wait before submitting another job.",
                        retry_after_seconds=retry_after,
                    )
            self._last_accepted[user_id] = now
