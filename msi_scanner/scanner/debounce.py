"""
==============================================================================
Result Debounce Module
==============================================================================

Duplicate suppression for continuous frame streams.

The arbitrator delivers one result per frame and never debounces; a live
stream at 30 fps would otherwise publish the same label many times per
second. The calling layer filters successes through ResultDebouncer:

- At least ``min_interval_ms`` (750) between accepted results
- An identical payload is suppressed until ``republish_window_ms`` (800)
  has passed since it was last published

Local pipeline results carry no text, so their compact bar pattern is
used as the payload key.

==============================================================================
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from msi_scanner.config import Settings, get_settings
from msi_scanner.scanner.models import ScanResult, ScanSuccess


# Module logger
logger = logging.getLogger(__name__)


def payload_key(result: ScanSuccess) -> str:
    """Identity of a success for duplicate detection."""
    if result.data:
        return f"{result.format}:{result.data}"
    if result.profile is not None:
        return f"{result.format}:{result.profile.to_compact_ascii()}"
    return f"{result.format}:"


class ResultDebouncer:
    """
    Rate limiter and anti-republication filter for scan successes.

    Example:
        >>> debouncer = ResultDebouncer()
        >>> debouncer.accept(success)
        True
        >>> debouncer.accept(success)
        False
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        """
        Initialize debouncer.

        Args:
            settings: Provides both intervals
            clock: Monotonic clock in seconds
        """
        settings = settings or get_settings()
        self._min_interval = settings.debounce_min_interval_ms / 1000.0
        self._republish_window = settings.debounce_republish_window_ms / 1000.0
        self._clock = clock

        self._last_accepted_at: Optional[float] = None
        self._published: Dict[str, float] = {}
        self._lock = threading.Lock()

    def accept(self, result: ScanResult) -> bool:
        """
        Decide whether a result should be published.

        Only ScanSuccess values are ever accepted.

        Returns:
            True if the caller should publish the result
        """
        if not isinstance(result, ScanSuccess):
            return False

        key = payload_key(result)

        with self._lock:
            now = self._clock()

            if self._last_accepted_at is not None and now - self._last_accepted_at < self._min_interval:
                logger.debug(f"Debounced {key}: inside minimum interval")
                return False

            last_published = self._published.get(key)
            if last_published is not None and now - last_published < self._republish_window:
                logger.debug(f"Debounced {key}: republished too soon")
                return False

            self._last_accepted_at = now
            self._published[key] = now
            self._prune(now)

        return True

    def reset(self) -> None:
        with self._lock:
            self._last_accepted_at = None
            self._published.clear()

    def _prune(self, now: float) -> None:
        expired = [k for k, t in self._published.items() if now - t >= self._republish_window]
        for key in expired:
            del self._published[key]
