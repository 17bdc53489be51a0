"""
Wire events exchanged with browser clients.

Every frame is a JSON envelope ``{"event": <name>, "data": {...}}``. Inbound
names are intents addressed to the coordinator; outbound names describe
state changes pushed to customers and agents.
"""
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from ..exceptions import SupportError
from ..models.agent import Agent
from ..models.base import utcnow
from ..models.message import Message
from ..models.queue import QueueEntry
from ..models.schemas import SystemStats
from ..models.session import ChatSession, SessionStatus


class Inbound:
    """Intent names accepted from clients."""
    START_CHAT = "customer:start_chat"
    SEND_MESSAGE = "customer:send_message"
    REQUEST_AGENT = "customer:request_agent"
    END_CHAT = "customer:end_chat"
    RESUME = "customer:resume"
    AGENT_JOIN = "agent:join"
    AGENT_LEAVE = "agent:leave"
    AGENT_SET_STATUS = "agent:set_status"
    PICKUP = "agent:pickup_session"
    AGENT_MESSAGE = "agent:send_message"
    CLOSE_SESSION = "agent:close_session"
    GET_STATS = "admin:get_stats"
    FETCH_SESSION = "session:fetch"
    PING = "ping"


class Outbound:
    """Event names pushed to clients."""
    CONNECTED = "connected"
    PONG = "pong"
    SESSION_CREATED = "session:created"
    SESSION_STATE = "session:state"
    SESSION_ASSIGNED = "session:assigned"
    SESSION_CLOSED = "session:closed"
    MESSAGE_RECEIVED = "message:received"
    STATUS_CHANGED = "status:changed"
    AGENT_JOINED = "agent:joined"
    AGENT_UPDATED = "agent:updated"
    QUEUE_UPDATE = "queue:update"
    CUSTOMER_WAITING = "queue:customer_waiting"
    STATS_UPDATE = "stats:update"
    ERROR = "error"


class Event(BaseModel):
    """Outbound event envelope."""
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        return {"event": self.name, "data": self.data}


def connected(connection_id: str) -> Event:
    return Event(
        name=Outbound.CONNECTED,
        data={"connectionId": connection_id, "timestamp": utcnow().isoformat()}
    )


def pong() -> Event:
    return Event(name=Outbound.PONG, data={"timestamp": utcnow().isoformat()})


def session_created(session: ChatSession) -> Event:
    return Event(
        name=Outbound.SESSION_CREATED,
        data={
            "sessionId": session.id,
            "status": session.status.value,
            "session": session.to_wire(),
        }
    )


def session_state(session: ChatSession) -> Event:
    return Event(
        name=Outbound.SESSION_STATE,
        data={"sessionId": session.id, "session": session.to_wire()}
    )


def session_assigned(session: ChatSession) -> Event:
    return Event(
        name=Outbound.SESSION_ASSIGNED,
        data={"sessionId": session.id, "session": session.to_wire()}
    )


def session_closed(session_id: str) -> Event:
    return Event(name=Outbound.SESSION_CLOSED, data={"sessionId": session_id})


def message_received(message: Message) -> Event:
    return Event(name=Outbound.MESSAGE_RECEIVED, data=message.to_wire())


def status_changed(
    session_id: str,
    status: SessionStatus,
    agent_name: Optional[str] = None
) -> Event:
    data = {"sessionId": session_id, "status": status.value}
    if agent_name:
        data["agentName"] = agent_name
    return Event(name=Outbound.STATUS_CHANGED, data=data)


def agent_joined(agent: Agent) -> Event:
    return Event(
        name=Outbound.AGENT_JOINED,
        data={"agentId": agent.id, "agent": agent.to_wire()}
    )


def agent_updated(agent: Agent) -> Event:
    return Event(name=Outbound.AGENT_UPDATED, data={"agent": agent.to_wire()})


def queue_update(summaries: Iterable[Dict[str, Any]]) -> Event:
    sessions: List[Dict[str, Any]] = list(summaries)
    return Event(
        name=Outbound.QUEUE_UPDATE,
        data={"sessions": sessions, "length": len(sessions)}
    )


def customer_waiting(session: ChatSession, entry: QueueEntry, position: int) -> Event:
    data = session.summary()
    data["sessionId"] = session.id
    data["queueInfo"] = {
        "priority": entry.priority.value,
        "reason": entry.reason,
        "position": position,
        "enqueuedAt": entry.enqueued_at.isoformat(),
    }
    return Event(name=Outbound.CUSTOMER_WAITING, data=data)


def stats_update(stats: SystemStats) -> Event:
    return Event(name=Outbound.STATS_UPDATE, data=stats.to_wire())


def error(exc: SupportError) -> Event:
    return Event(name=Outbound.ERROR, data=exc.to_payload())


__all__ = [
    'Inbound',
    'Outbound',
    'Event',
    'connected',
    'pong',
    'session_created',
    'session_state',
    'session_assigned',
    'session_closed',
    'message_received',
    'status_changed',
    'agent_joined',
    'agent_updated',
    'queue_update',
    'customer_waiting',
    'stats_update',
    'error',
]
