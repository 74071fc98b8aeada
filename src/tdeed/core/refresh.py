"""
Delayed re-fetch after a successful write.

Chain state read right after a write often still reflects the previous block,
so the token's data is re-fetched after a short delay instead.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from tdeed.core import config

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[int], None]


class RefreshScheduler:
    """Schedules ``callback(token_id)`` on a daemon timer after ``delay`` seconds."""

    def __init__(self, callback: Optional[RefreshCallback] = None, delay: Optional[float] = None) -> None:
        self.callback = callback
        self.delay = config.REFRESH_DELAY_SECONDS if delay is None else float(delay)
        self._timers: List[threading.Timer] = []
        self._lock = threading.Lock()

    def schedule(self, token_id: int) -> Optional[threading.Timer]:
        """Start a timer for ``token_id``; returns None when no callback is set."""
        if self.callback is None:
            return None
        timer = threading.Timer(self.delay, self._fire, args=(int(token_id),))
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()
        logger.debug(
            "Refresh of token %s scheduled in %.1fs",
            token_id,
            self.delay,
            extra={"event": "refresh.scheduled", "token_id": int(token_id)},
        )
        return timer

    def _fire(self, token_id: int) -> None:
        try:
            self.callback(token_id)
        except Exception as exc:
            logger.warning(
                "Refresh of token %s failed: %s",
                token_id,
                exc,
                extra={"event": "refresh.failed", "token_id": token_id},
            )

    @property
    def pending(self) -> int:
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            return len(self._timers)

    def cancel_all(self) -> None:
        with self._lock:
            timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()

    def join(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            timers = list(self._timers)
        for timer in timers:
            timer.join(timeout)
