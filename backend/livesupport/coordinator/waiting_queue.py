"""
Waiting queue of sessions that asked for a human agent.

Entries are ordered by priority tier (high before normal before low) and,
within a tier, by enqueue time. The queue only references sessions; the
session store stays the single owner of session state.

Version: 1.0.0
"""
import asyncio
import bisect
import itertools
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..exceptions import AlreadyQueued
from ..models.base import utcnow
from ..models.queue import Priority, QueueEntry
from ..models.schemas import QueueBreakdown
from ..models.session import SessionStatus
from ..session.session_store import SessionStore

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500


class WaitingQueue:
    """
    Priority + FIFO queue of waiting sessions.

    Enqueueing moves the session to 'waiting' through the store, so a session
    is in the queue if and only if its status is 'waiting' (the coordinator
    removes the entry under the same session lock that changes the status).
    """

    def __init__(self, session_store: SessionStore):
        self.session_store = session_store
        self.entries: Dict[str, QueueEntry] = {}
        self._ordered: List[Tuple[tuple, str]] = []
        self._sequence = itertools.count()
        self.lock = asyncio.Lock()

    async def enqueue(
        self,
        session_id: str,
        priority: Priority = Priority.NORMAL,
        reason: Optional[str] = None
    ) -> QueueEntry:
        """
        Put a session at the back of its priority tier.

        Raises:
            NotFound: Unknown session
            AlreadyQueued: Session is already waiting
            InvalidTransition: Session is not in 'bot' status
        """
        if reason and len(reason) > MAX_REASON_LENGTH:
            reason = reason[:MAX_REASON_LENGTH]

        async with self.lock:
            session = await self.session_store.get_session(session_id)

            if session_id in self.entries or session.status == SessionStatus.WAITING:
                raise AlreadyQueued(
                    f"Session {session_id} is already waiting for an agent",
                    session_id=session_id
                )

            await self.session_store.set_status(session_id, SessionStatus.WAITING)
            await self.session_store.update_metadata(
                session_id,
                priority=priority,
                transfer_reason=reason
            )

            entry = QueueEntry(
                session_id=session_id,
                priority=priority,
                enqueued_at=utcnow(),
                reason=reason,
                sequence=next(self._sequence)
            )
            bisect.insort(self._ordered, (entry.sort_key, session_id))
            self.entries[session_id] = entry

        logger.info(
            f"Session {session_id} queued with {priority.value} priority "
            f"(queue length {len(self.entries)})"
        )
        return entry

    async def remove(self, session_id: str) -> Optional[QueueEntry]:
        """Drop a session's entry; a no-op for sessions not in the queue."""
        async with self.lock:
            entry = self.entries.pop(session_id, None)
            if entry is None:
                return None

            index = bisect.bisect_left(self._ordered, (entry.sort_key, session_id))
            del self._ordered[index]

        logger.debug(f"Session {session_id} left the queue")
        return entry

    def dequeue_next(self) -> Optional[QueueEntry]:
        """Head of the queue without removing it."""
        if not self._ordered:
            return None
        return self.entries[self._ordered[0][1]]

    def snapshot(self) -> List[QueueEntry]:
        """Entries in service order."""
        return [self.entries[session_id] for _, session_id in self._ordered]

    def get(self, session_id: str) -> Optional[QueueEntry]:
        return self.entries.get(session_id)

    def position(self, session_id: str) -> Optional[int]:
        """1-based position in service order, None when not queued."""
        for index, (_, queued_id) in enumerate(self._ordered):
            if queued_id == session_id:
                return index + 1
        return None

    def breakdown(self) -> QueueBreakdown:
        counts = {priority.value: 0 for priority in Priority}
        for entry in self.entries.values():
            counts[entry.priority.value] += 1
        return QueueBreakdown(**counts)

    def average_wait_seconds(self, now: Optional[datetime] = None) -> float:
        if not self.entries:
            return 0.0
        now = now or utcnow()
        total = sum(entry.wait_seconds(now) for entry in self.entries.values())
        return total / len(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self.entries


__all__ = ['WaitingQueue', 'MAX_REASON_LENGTH']
