"""
Per-agent scheduling bookkeeping.

Due times live on a fixed grid anchored at registration: anchor + k * interval.
Advancing after a run moves to the next grid point, so slow ticks never
compress later intervals, and a long pause yields a single catch-up run.
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ScheduleEntry:
    """Next-due bookkeeping for one agent (times come from the orchestrator clock)."""
    interval: float
    next_due: float

    @classmethod
    def starting_at(cls, now: float, interval: float) -> "ScheduleEntry":
        if interval <= 0:
            raise ValueError(f"execution interval must be positive, got {interval}")
        return cls(interval=float(interval), next_due=now + interval)

    def is_due(self, now: float) -> bool:
        return now >= self.next_due

    def advance(self, now: float) -> int:
        """
        Move to the next grid point after a run at `now`.

        Returns the number of grid points dropped because the run was late by
        one or more whole intervals.
        """
        self.next_due += self.interval
        if self.next_due > now:
            return 0

        missed = int((now - self.next_due) // self.interval) + 1
        self.next_due += missed * self.interval
        logger.debug("Dropped %d missed run(s); next due at %.3f", missed, self.next_due)
        return missed

    def reschedule(self, now: float, interval: float) -> None:
        """Apply a new interval; the next run is one new interval from now."""
        if interval <= 0:
            raise ValueError(f"execution interval must be positive, got {interval}")
        self.interval = float(interval)
        self.next_due = now + self.interval
