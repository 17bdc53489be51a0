"""
In-memory session store implementation.
Suitable for a single coordinator instance; state is lost on restart.

Version: 1.0.0
"""
import asyncio
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..exceptions import NotFound, SessionClosed
from ..models.base import utcnow
from ..models.message import Message, SenderRole
from ..models.session import ChatSession, SessionMetadata, SessionStatus
from .session_store import SessionStore
from .transitions import validate_transition

logger = logging.getLogger(__name__)


class InMemorySessionStore(SessionStore):
    """
    In-memory implementation of SessionStore.

    Features:
    - asyncio lock around every read-modify-write
    - copy-on-write updates, so a failed validation leaves state untouched
    - deep copies on read to prevent external mutation
    - closed-session purging for bounded memory
    """

    def __init__(self):
        self.sessions: "OrderedDict[str, ChatSession]" = OrderedDict()
        self.lock = asyncio.Lock()
        self.total_created = 0
        self.total_purged = 0

        logger.info("InMemorySessionStore initialized")

    def _require(self, session_id: str) -> ChatSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found", session_id=session_id)
        return session

    async def create_session(
        self,
        customer_id: str,
        bot_context: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ChatSession:
        now = utcnow()
        session = ChatSession(
            customer_id=customer_id,
            bot_context=bot_context,
            metadata=SessionMetadata.model_validate(metadata or {}),
            created_at=now,
            updated_at=now
        )

        async with self.lock:
            self.sessions[session.id] = session
            self.total_created += 1

        logger.debug(f"Created session {session.id} for customer {customer_id}")
        return session.model_copy(deep=True)

    async def append_message(
        self,
        session_id: str,
        content: str,
        sender: SenderRole,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Message:
        async with self.lock:
            session = self._require(session_id)

            if session.status == SessionStatus.CLOSED:
                raise SessionClosed(
                    f"Session {session_id} is closed",
                    session_id=session_id
                )

            message = Message(
                session_id=session_id,
                content=content,
                sender=sender,
                metadata=metadata
            )

            self.sessions[session_id] = session.model_copy(update={
                "messages": [*session.messages, message],
                "updated_at": message.timestamp,
            })

        logger.debug(
            f"Appended {sender.value} message {message.id} to session {session_id}"
        )
        return message

    async def set_status(
        self,
        session_id: str,
        new_status: SessionStatus,
        assigned_agent: Optional[str] = None
    ) -> ChatSession:
        async with self.lock:
            session = self._require(session_id)
            validate_transition(session_id, session.status, new_status, assigned_agent)

            now = utcnow()
            update = {
                "status": new_status,
                "assigned_agent": assigned_agent,
                "updated_at": now,
            }
            if new_status == SessionStatus.CLOSED:
                update["closed_at"] = now

            updated = session.model_copy(update=update)
            self.sessions[session_id] = updated

        logger.debug(
            f"Session {session_id}: {session.status.value} -> {new_status.value}"
            + (f" (agent={assigned_agent})" if assigned_agent else "")
        )
        return updated.model_copy(deep=True)

    async def get_session(self, session_id: str) -> ChatSession:
        async with self.lock:
            return self._require(session_id).model_copy(deep=True)

    async def update_metadata(self, session_id: str, **fields: Any) -> ChatSession:
        async with self.lock:
            session = self._require(session_id)
            merged = {**session.metadata.model_dump(), **fields}
            updated = session.model_copy(update={
                "metadata": SessionMetadata.model_validate(merged),
                "updated_at": utcnow(),
            })
            self.sessions[session_id] = updated

        return updated.model_copy(deep=True)

    async def list_sessions(
        self,
        statuses: Optional[Iterable[SessionStatus]] = None
    ) -> List[ChatSession]:
        wanted = set(statuses) if statuses is not None else None
        async with self.lock:
            return [
                session.model_copy(deep=True)
                for session in self.sessions.values()
                if wanted is None or session.status in wanted
            ]

    async def count_messages_since(self, since: datetime) -> int:
        async with self.lock:
            return sum(
                1
                for session in self.sessions.values()
                for message in session.messages
                if message.timestamp >= since
            )

    async def purge_closed(self, closed_before: datetime) -> List[ChatSession]:
        async with self.lock:
            expired = [
                session_id
                for session_id, session in self.sessions.items()
                if session.status == SessionStatus.CLOSED
                and session.closed_at is not None
                and session.closed_at < closed_before
            ]
            purged = [self.sessions.pop(session_id) for session_id in expired]
            self.total_purged += len(purged)

        if purged:
            logger.info(f"Purged {len(purged)} closed sessions")
        return purged

    async def get_stats(self) -> Dict[str, Any]:
        async with self.lock:
            by_status = {status.value: 0 for status in SessionStatus}
            message_count = 0
            for session in self.sessions.values():
                by_status[session.status.value] += 1
                message_count += len(session.messages)

            return {
                "store_type": "in_memory",
                "total_sessions": len(self.sessions),
                "sessions_by_status": by_status,
                "total_messages": message_count,
                "total_created": self.total_created,
                "total_purged": self.total_purged,
            }


__all__ = ['InMemorySessionStore']
