"""Progress reporting for long-running operations"""

from dataclasses import dataclass
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class ProgressEvent:
    """One progress update"""
    percentage: float
    message: str
    chunk_status: Optional[str] = None
    error: bool = False


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressReporter:
    """
    Wraps a callback so percentage never goes backwards within one operation
    A failing callback is logged and ignored; progress is advisory
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.last_percentage = 0.0

    def reset(self):
        """Start a new operation"""
        self.last_percentage = 0.0

    def report(self, percentage: float, message: str,
               chunk_status: Optional[str] = None, error: bool = False):
        percentage = min(100.0, max(self.last_percentage, float(percentage)))
        self.last_percentage = percentage

        if self.callback is None:
            return

        try:
            self.callback(ProgressEvent(percentage, message, chunk_status, error))
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")
