"""
Progress Tracking
=================
Weighted percent-complete reporting and cooperative cancellation for a
deployment run.
"""

import logging
import threading
from typing import Callable, Optional

from ..config.deploy_config import DeploymentStage
from .exceptions import DeploymentCancelled


logger = logging.getLogger(__name__)


class ProgressTracker:
    """Accumulates percent done and forwards it to a caller-supplied sink."""

    def __init__(self, callback: Optional[Callable[[float], None]] = None):
        self.callback = callback
        self.percent_done = 0.0
        self._lock = threading.Lock()

    def report(self, percent: float):
        """
        Report an absolute percentage.

        Values lower than what was already reported are ignored so the sink
        never sees progress go backwards.
        """
        with self._lock:
            if percent < self.percent_done:
                logger.debug(f"Ignoring decreasing progress {percent} < {self.percent_done}")
                return
            self.percent_done = percent
            self._notify(percent)

    def advance(self, delta: float):
        """Add delta percent to the running total and report it."""
        with self._lock:
            if delta < 0:
                return
            self.percent_done += delta
            self._notify(self.percent_done)

    def _notify(self, percent: float):
        if not self.callback:
            return
        try:
            self.callback(percent)
        except Exception as e:
            logger.warning(f"Progress callback failed at {percent:.2f}%: {e}")


class CancellationToken:
    """Thread-safe flag a caller sets to stop a run at the next step boundary."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: DeploymentStage, item_id: Optional[str] = None):
        """Raise DeploymentCancelled when cancel() has been called."""
        if self._event.is_set():
            raise DeploymentCancelled(stage, item_id=item_id)
