"""
Chat message model.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from pydantic import ConfigDict, Field

from .base import WireModel, utcnow


class SenderRole(str, Enum):
    """Who produced a message."""
    CUSTOMER = "customer"
    BOT = "bot"
    AGENT = "agent"
    SYSTEM = "system"


class Message(WireModel):
    """
    A single message within a session.

    Immutable once created; the owning session keeps messages in delivery order.
    """

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., max_length=10000)
    sender: SenderRole
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Optional[Dict[str, Any]] = None

    def __repr__(self):
        return f"<Message(id={self.id}, session={self.session_id}, sender={self.sender.value})>"


__all__ = ['SenderRole', 'Message']
