"""
Transcript archive: closed sessions leaving memory are written to SQL so
their transcripts stay available over REST and in the 24h message count.

SQLAlchemy work is synchronous; the coordinator runs it in a worker thread.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import func

from ..database import Database
from ..models.session import ChatSession
from ..models.transcript import ArchivedMessage, ArchivedSession

logger = logging.getLogger(__name__)


class TranscriptArchive:
    """Writes and reads archived session transcripts."""

    def __init__(self, database: Database):
        self.database = database

    def archive(self, sessions: Iterable[ChatSession]) -> int:
        """
        Persist sessions with their messages. Already archived ids are skipped.

        Returns:
            Number of sessions written
        """
        written = 0
        with self.database.session_scope() as db:
            for session in sessions:
                if db.get(ArchivedSession, session.id) is not None:
                    continue

                record = ArchivedSession(
                    id=session.id,
                    customer_id=session.customer_id,
                    assigned_agent=(session.metadata.model_extra or {}).get("handled_by"),
                    status=session.status.value,
                    priority=session.metadata.priority.value,
                    transfer_reason=session.metadata.transfer_reason,
                    created_at=session.created_at,
                    closed_at=session.closed_at or session.updated_at,
                    session_metadata=session.metadata.to_wire()
                )
                record.messages = [
                    ArchivedMessage(
                        id=message.id,
                        position=position,
                        sender=message.sender.value,
                        content=message.content,
                        timestamp=message.timestamp,
                        message_metadata=message.metadata
                    )
                    for position, message in enumerate(session.messages)
                ]
                db.add(record)
                written += 1

        if written:
            logger.info(f"Archived {written} session transcripts")
        return written

    def get_transcript(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Archived session in wire form, or None."""
        with self.database.session_scope() as db:
            record = db.get(ArchivedSession, session_id)
            if record is None:
                return None

            return {
                "id": record.id,
                "userId": record.customer_id,
                "status": record.status,
                "assignedAgent": record.assigned_agent,
                "metadata": record.session_metadata or {},
                "createdAt": record.created_at.isoformat(),
                "closedAt": record.closed_at.isoformat(),
                "archived": True,
                "messages": [
                    {
                        "id": message.id,
                        "sessionId": record.id,
                        "content": message.content,
                        "sender": message.sender,
                        "timestamp": message.timestamp.isoformat(),
                        "metadata": message.message_metadata,
                    }
                    for message in record.messages
                ],
            }

    def count_messages_since(self, since: datetime) -> int:
        with self.database.session_scope() as db:
            return db.query(func.count(ArchivedMessage.id)).filter(
                ArchivedMessage.timestamp >= since
            ).scalar() or 0

    def count_sessions(self) -> int:
        with self.database.session_scope() as db:
            return db.query(func.count(ArchivedSession.id)).scalar() or 0


__all__ = ['TranscriptArchive']
