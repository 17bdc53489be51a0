"""
Payload schemas for inbound intents.
"""
from typing import Any, Dict, Literal, Optional

from pydantic import ConfigDict, Field, field_validator

from ..models.base import WireModel
from ..models.queue import Priority


class IntentPayload(WireModel):
    """Base for intent payloads; unknown keys are ignored."""
    model_config = ConfigDict(extra="ignore")


class StartChatIntent(IntentPayload):
    user_id: str = Field(..., min_length=1, max_length=255)
    bot_context: Optional[str] = Field(None, max_length=5000)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "userId": "jane@example.com",
            "botContext": "Customer name: Jane",
            "metadata": {"name": "Jane", "email": "jane@example.com"}
        }
    })


class SessionIntent(IntentPayload):
    """Any intent addressed to one session."""
    session_id: str = Field(..., min_length=1, max_length=255)


class MessageIntent(SessionIntent):
    content: str = Field(..., min_length=1, max_length=4000)

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        """Ensure message is not just whitespace."""
        if not v.strip():
            raise ValueError('Message cannot be empty')
        return v.strip()


class RequestAgentIntent(SessionIntent):
    reason: Optional[str] = Field(None, max_length=500)
    priority: Optional[Priority] = None


class ResumeIntent(SessionIntent):
    user_id: str = Field(..., min_length=1, max_length=255)


class AgentJoinIntent(IntentPayload):
    name: str = Field(..., min_length=1, max_length=100)
    agent_id: Optional[str] = Field(None, max_length=255)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Agent name cannot be empty')
        return v.strip()


class AgentStatusIntent(IntentPayload):
    status: Literal["available", "busy"]


__all__ = [
    'IntentPayload',
    'StartChatIntent',
    'SessionIntent',
    'MessageIntent',
    'RequestAgentIntent',
    'ResumeIntent',
    'AgentJoinIntent',
    'AgentStatusIntent',
]
