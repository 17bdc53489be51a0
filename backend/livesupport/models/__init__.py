"""
Domain models package.
Pydantic models for sessions, messages, agents and queue entries.

Version: 1.0.0
"""

from .message import Message, SenderRole
from .queue import Priority, QueueEntry, QueueInfo
from .session import ChatSession, SessionMetadata, SessionStatus
from .agent import Agent, AgentStatus
from .schemas import (
    HealthResponse,
    KnowledgeBaseStats,
    KnowledgeDocument,
    QueueBreakdown,
    SystemStats,
)

__all__ = [
    'Message',
    'SenderRole',
    'Priority',
    'QueueEntry',
    'QueueInfo',
    'ChatSession',
    'SessionMetadata',
    'SessionStatus',
    'Agent',
    'AgentStatus',
    'HealthResponse',
    'KnowledgeBaseStats',
    'KnowledgeDocument',
    'QueueBreakdown',
    'SystemStats',
]
