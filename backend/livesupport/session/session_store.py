"""
Abstract session store interface.
Defines the contract for the canonical store of chat sessions.

Version: 1.0.0
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..exceptions import NotFound
from ..models.message import Message, SenderRole
from ..models.session import ChatSession, SessionStatus


class SessionStore(ABC):
    """
    Abstract base class for session storage.

    Implementations must guarantee that:
    - every method either fully applies or has no effect
    - an appended message is visible to reads once ``append_message`` returns
    - returned sessions are copies, never references into store state
    - status changes follow the transition table in ``transitions``
    """

    @abstractmethod
    async def create_session(
        self,
        customer_id: str,
        bot_context: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ChatSession:
        """
        Create a session in 'bot' status with no messages.

        Args:
            customer_id: Owning customer identifier
            bot_context: Context handed to the bot responder
            metadata: Customer metadata (name, email, ...)

        Returns:
            The new session
        """
        pass

    @abstractmethod
    async def append_message(
        self,
        session_id: str,
        content: str,
        sender: SenderRole,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Message:
        """
        Append a message to a session.

        Raises:
            NotFound: Unknown session
            SessionClosed: Session is closed
        """
        pass

    @abstractmethod
    async def set_status(
        self,
        session_id: str,
        new_status: SessionStatus,
        assigned_agent: Optional[str] = None
    ) -> ChatSession:
        """
        Move a session to a new status.

        Raises:
            NotFound: Unknown session
            InvalidTransition: Transition not in the table or agent mismatch
        """
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> ChatSession:
        """
        Get a session by ID.

        Raises:
            NotFound: Unknown session
        """
        pass

    @abstractmethod
    async def update_metadata(self, session_id: str, **fields: Any) -> ChatSession:
        """Merge fields into the session metadata."""
        pass

    @abstractmethod
    async def list_sessions(
        self,
        statuses: Optional[Iterable[SessionStatus]] = None
    ) -> List[ChatSession]:
        """List sessions, optionally filtered by status, oldest first."""
        pass

    @abstractmethod
    async def count_messages_since(self, since: datetime) -> int:
        """Count messages with a timestamp at or after ``since``."""
        pass

    @abstractmethod
    async def purge_closed(self, closed_before: datetime) -> List[ChatSession]:
        """Remove closed sessions closed before the cutoff and return them."""
        pass

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        """Store statistics."""
        pass

    async def exists(self, session_id: str) -> bool:
        try:
            await self.get_session(session_id)
            return True
        except NotFound:
            return False

    async def list_active(self) -> List[ChatSession]:
        """Sessions that are not closed."""
        return await self.list_sessions(
            statuses=[SessionStatus.BOT, SessionStatus.WAITING, SessionStatus.AGENT]
        )

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform health check on session store.

        Returns:
            Dictionary with health status
        """
        try:
            stats = await self.get_stats()
            return {"healthy": True, "stats": stats}
        except Exception as e:
            return {"healthy": False, "error": str(e)}


__all__ = ['SessionStore']
