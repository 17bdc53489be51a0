"""
Pydantic schemas for statistics, health and collaborator payloads.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ConfigDict, Field

from .base import WireModel


class QueueBreakdown(WireModel):
    """Number of waiting sessions per priority tier."""
    high: int = Field(0, ge=0)
    normal: int = Field(0, ge=0)
    low: int = Field(0, ge=0)


class KnowledgeBaseStats(WireModel):
    """Document statistics reported by the knowledge-base service."""
    total_documents: int = Field(0, ge=0)
    avg_content_length: float = Field(0.0, ge=0.0)
    recent_documents: int = Field(0, ge=0)


class SystemStats(WireModel):
    """Aggregate coordinator statistics for the agent dashboard."""
    total_sessions: int = Field(0, ge=0)
    active_sessions: int = Field(0, ge=0)
    queue_length: int = Field(0, ge=0)
    total_agents: int = Field(0, ge=0)
    available_agents: int = Field(0, ge=0)
    queue_breakdown: QueueBreakdown = Field(default_factory=QueueBreakdown)
    avg_wait_time: float = Field(0.0, ge=0.0, description="Seconds")
    messages_last_24h: int = Field(0, ge=0, alias="messagesLast24h")
    knowledge_base: Optional[KnowledgeBaseStats] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "totalSessions": 12,
            "activeSessions": 5,
            "queueLength": 2,
            "totalAgents": 3,
            "availableAgents": 1,
            "queueBreakdown": {"high": 1, "normal": 1, "low": 0},
            "avgWaitTime": 42.5,
            "messagesLast24h": 318
        }
    })


class KnowledgeDocument(WireModel):
    """A ranked knowledge-base search hit."""
    id: Any
    title: str = ""
    content: str = ""
    similarity: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HealthResponse(WireModel):
    """Health check response."""
    status: str
    timestamp: datetime
    version: str
    services: Dict[str, str] = Field(default_factory=dict)


__all__ = [
    'QueueBreakdown',
    'KnowledgeBaseStats',
    'SystemStats',
    'KnowledgeDocument',
    'HealthResponse',
]
