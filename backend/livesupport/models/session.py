"""
Chat session model.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from pydantic import ConfigDict, Field

from .base import WireModel, utcnow
from .message import Message
from .queue import Priority, QueueInfo


class SessionStatus(str, Enum):
    """Session lifecycle status."""
    BOT = "bot"
    WAITING = "waiting"
    AGENT = "agent"
    CLOSED = "closed"


class SessionMetadata(WireModel):
    """Customer-supplied and routing metadata; unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    name: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    priority: Priority = Priority.NORMAL
    transfer_reason: Optional[str] = Field(None, max_length=500)


class ChatSession(WireModel):
    """
    One customer's support conversation.

    Invariant: ``assigned_agent`` is set if and only if ``status`` is AGENT.
    Instances handed out by the store are copies; mutate through the store.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    customer_id: str = Field(..., alias="userId", min_length=1, max_length=255)
    status: SessionStatus = SessionStatus.BOT
    messages: List[Message] = Field(default_factory=list)
    assigned_agent: Optional[str] = None
    bot_context: Optional[str] = None
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    closed_at: Optional[datetime] = None

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def is_closed(self) -> bool:
        return self.status == SessionStatus.CLOSED

    def summary(self, queue_info: Optional[QueueInfo] = None) -> Dict[str, Any]:
        """Wire form without the message list, for queue and dashboard views."""
        data = self.to_wire(exclude={"messages", "bot_context"})
        data["messageCount"] = self.message_count
        if queue_info is not None:
            data["queueInfo"] = queue_info.to_wire()
        return data

    def __repr__(self):
        return (
            f"<ChatSession(id={self.id}, customer={self.customer_id}, "
            f"status={self.status.value}, agent={self.assigned_agent})>"
        )


__all__ = ['SessionStatus', 'SessionMetadata', 'ChatSession']
