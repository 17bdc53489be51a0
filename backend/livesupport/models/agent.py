"""
Support agent model.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional
import uuid

from pydantic import Field

from .base import WireModel, utcnow


class AgentStatus(str, Enum):
    """Agent availability."""
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class Agent(WireModel):
    """
    A human support agent.

    Identified by ``id``; ``connection_id`` is the current transport
    connection and changes across reconnects.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = Field(..., min_length=1, max_length=100)
    connection_id: Optional[str] = Field(None, alias="socketId")
    status: AgentStatus = AgentStatus.AVAILABLE
    active_sessions: List[str] = Field(default_factory=list)
    joined_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)

    def owns(self, session_id: str) -> bool:
        return session_id in self.active_sessions

    def has_capacity(self, max_sessions: int) -> bool:
        return len(self.active_sessions) < max_sessions

    def __repr__(self):
        return f"<Agent(id={self.id}, name={self.name}, status={self.status.value})>"


__all__ = ['AgentStatus', 'Agent']
