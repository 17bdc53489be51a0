"""
Queue entry model.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import ConfigDict, Field

from .base import WireModel, utcnow


class Priority(str, Enum):
    """Queue priority tiers; high is served first."""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.HIGH: 0,
    Priority.NORMAL: 1,
    Priority.LOW: 2,
}


class QueueEntry(WireModel):
    """
    Weak reference to a session awaiting a human agent.

    Never owns the session; ``sequence`` breaks ties between entries enqueued
    with identical timestamps.
    """

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    session_id: str
    priority: Priority = Priority.NORMAL
    enqueued_at: datetime = Field(default_factory=utcnow)
    reason: Optional[str] = None
    sequence: int = 0

    @property
    def sort_key(self):
        return (self.priority.rank, self.enqueued_at, self.sequence)

    def wait_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return max((now - self.enqueued_at).total_seconds(), 0.0)


class QueueInfo(WireModel):
    """Queue details attached to a session summary for dashboards."""

    session_id: str
    status: str
    priority: Priority
    wait_time: float
    position: int


__all__ = ['Priority', 'QueueEntry', 'QueueInfo']
