"""Background jobs."""

from .scheduler import IntervalTicker
from .abandonment_reaper import AbandonmentReaper, SweepReport

__all__ = ["IntervalTicker", "AbandonmentReaper", "SweepReport"]
