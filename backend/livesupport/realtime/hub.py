"""
Connection hub: who is connected, which sessions and agents they speak for,
and a bounded outbox per connection.

Publishing never blocks the coordinator. Events are put on the target
connection's outbox and a per-connection writer task drains it to the
transport; when an outbox is full the event is dropped for that connection
only and a warning is logged.
"""
import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Set

from ..models.base import utcnow
from ..utils.telemetry import track_dropped_event, update_websocket_connections
from .events import Event

logger = logging.getLogger(__name__)


class Connection:
    """One client transport connection."""

    def __init__(self, connection_id: str, outbox_size: int = 500):
        self.id = connection_id
        self.outbox: "asyncio.Queue[Event]" = asyncio.Queue(maxsize=outbox_size)
        self.customer_id: Optional[str] = None
        self.agent_id: Optional[str] = None
        self.session_ids: Set[str] = set()
        self.connected_at: datetime = utcnow()
        self.dropped = 0

    def deliver(self, event: Event) -> bool:
        try:
            self.outbox.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            track_dropped_event(event.name)
            logger.warning(
                f"Outbox full for connection {self.id}, dropped '{event.name}' "
                f"({self.dropped} dropped so far)"
            )
            return False

    def drain(self) -> List[Event]:
        """Pop everything currently queued (used by tests and shutdown)."""
        events = []
        while not self.outbox.empty():
            events.append(self.outbox.get_nowait())
        return events

    def __repr__(self):
        return (
            f"<Connection(id={self.id}, customer={self.customer_id}, "
            f"agent={self.agent_id})>"
        )


class ConnectionHub:
    """
    Maps sessions and agents to live connections and fans events out.

    A customer session may be watched by several connections (tabs, resumes);
    an agent id maps to the connections that joined as that agent.
    """

    def __init__(self, outbox_size: int = 500):
        self.outbox_size = outbox_size
        self.connections: Dict[str, Connection] = {}
        self.session_watchers: Dict[str, Set[str]] = defaultdict(set)
        self.agent_connections: Dict[str, Set[str]] = defaultdict(set)

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    def register(self, connection_id: Optional[str] = None) -> Connection:
        connection = Connection(connection_id or str(uuid.uuid4()), self.outbox_size)
        self.connections[connection.id] = connection
        update_websocket_connections(self.connection_count)
        logger.info(f"Connection {connection.id} opened")
        return connection

    def unregister(self, connection_id: str) -> Optional[Connection]:
        """Forget a connection. Sessions and agents it spoke for are untouched."""
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return None

        for session_id in connection.session_ids:
            watchers = self.session_watchers.get(session_id)
            if watchers is not None:
                watchers.discard(connection_id)
                if not watchers:
                    del self.session_watchers[session_id]

        if connection.agent_id:
            self._unbind_agent(connection.agent_id, connection_id)

        update_websocket_connections(self.connection_count)
        logger.info(f"Connection {connection_id} closed")
        return connection

    def get(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    def bind_customer(self, connection_id: str, session_id: str, customer_id: str) -> None:
        connection = self.connections.get(connection_id)
        if connection is None:
            return
        connection.customer_id = customer_id
        connection.session_ids.add(session_id)
        self.session_watchers[session_id].add(connection_id)

    def bind_agent(self, connection_id: str, agent_id: str) -> None:
        connection = self.connections.get(connection_id)
        if connection is None:
            return
        if connection.agent_id and connection.agent_id != agent_id:
            self._unbind_agent(connection.agent_id, connection_id)
        connection.agent_id = agent_id
        self.agent_connections[agent_id].add(connection_id)

    def unbind_agent(self, connection_id: str) -> None:
        connection = self.connections.get(connection_id)
        if connection is None or not connection.agent_id:
            return
        self._unbind_agent(connection.agent_id, connection_id)
        connection.agent_id = None

    def _unbind_agent(self, agent_id: str, connection_id: str) -> None:
        connections = self.agent_connections.get(agent_id)
        if connections is None:
            return
        connections.discard(connection_id)
        if not connections:
            del self.agent_connections[agent_id]

    def to_connection(self, connection_id: str, event: Event) -> int:
        connection = self.connections.get(connection_id)
        if connection is None:
            return 0
        return int(connection.deliver(event))

    def _deliver_all(self, connection_ids, event: Event) -> int:
        delivered = 0
        for connection_id in list(connection_ids):
            delivered += self.to_connection(connection_id, event)
        return delivered

    def to_customer(self, session_id: str, event: Event) -> int:
        """Every connection watching the session as its customer."""
        return self._deliver_all(self.session_watchers.get(session_id, ()), event)

    def to_agent(self, agent_id: str, event: Event) -> int:
        return self._deliver_all(self.agent_connections.get(agent_id, ()), event)

    def to_agents(self, event: Event) -> int:
        """Broadcast to every connection currently joined as an agent."""
        targets = set()
        for connection_ids in self.agent_connections.values():
            targets.update(connection_ids)
        return self._deliver_all(targets, event)


__all__ = ['Connection', 'ConnectionHub']
