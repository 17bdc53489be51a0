"""
Registry of human support agents, their availability and their sessions.

Version: 1.0.0
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..exceptions import AgentUnavailable, NotFound
from ..models.agent import Agent, AgentStatus
from ..models.base import utcnow

logger = logging.getLogger(__name__)


class AgentRegistry:
    """
    In-memory agent registry keyed by agent id.

    An agent record outlives its connection: disconnecting only unbinds the
    connection, and a later ``register`` with the same id reattaches it with
    its active sessions intact.
    """

    def __init__(self):
        self.agents: Dict[str, Agent] = {}
        self.lock = asyncio.Lock()

    def _require(self, agent_id: str) -> Agent:
        agent = self.agents.get(agent_id)
        if agent is None:
            raise NotFound(f"Agent {agent_id} not found")
        return agent

    def _replace(self, agent: Agent, **update: Any) -> Agent:
        updated = agent.model_copy(update=update)
        self.agents[agent.id] = updated
        return updated.model_copy(deep=True)

    async def register(
        self,
        connection_id: str,
        name: str,
        agent_id: Optional[str] = None
    ) -> Agent:
        """
        Create an agent, or reactivate a known one on a new connection.

        Reactivated agents come back 'available' and keep their sessions.
        """
        async with self.lock:
            existing = self.agents.get(agent_id) if agent_id else None

            if existing is not None:
                agent = self._replace(
                    existing,
                    name=name,
                    connection_id=connection_id,
                    status=AgentStatus.AVAILABLE,
                    last_active_at=utcnow()
                )
                logger.info(f"Agent {agent.name} ({agent.id}) reconnected")
                return agent

            fields = {"name": name, "connection_id": connection_id}
            if agent_id:
                fields["id"] = agent_id
            agent = Agent(**fields)
            self.agents[agent.id] = agent

        logger.info(f"Agent {agent.name} ({agent.id}) joined")
        return agent.model_copy(deep=True)

    async def get(self, agent_id: str) -> Agent:
        """
        Raises:
            NotFound: Unknown agent
        """
        async with self.lock:
            return self._require(agent_id).model_copy(deep=True)

    async def find(self, agent_id: str) -> Optional[Agent]:
        async with self.lock:
            agent = self.agents.get(agent_id)
            return agent.model_copy(deep=True) if agent else None

    async def set_status(self, agent_id: str, status: AgentStatus) -> Agent:
        async with self.lock:
            agent = self._require(agent_id)
            updated = self._replace(agent, status=status, last_active_at=utcnow())

        logger.info(f"Agent {agent_id} is now {status.value}")
        return updated

    async def mark_available(self, agent_id: str) -> Agent:
        return await self.set_status(agent_id, AgentStatus.AVAILABLE)

    async def mark_busy(self, agent_id: str) -> Agent:
        return await self.set_status(agent_id, AgentStatus.BUSY)

    async def mark_offline(self, agent_id: str) -> Agent:
        """Take an agent out of the pickup pool; its sessions stay assigned."""
        return await self.set_status(agent_id, AgentStatus.OFFLINE)

    async def assign(self, agent_id: str, session_id: str) -> Agent:
        async with self.lock:
            agent = self._require(agent_id)
            if agent.owns(session_id):
                return agent.model_copy(deep=True)
            return self._replace(
                agent,
                active_sessions=[*agent.active_sessions, session_id],
                last_active_at=utcnow()
            )

    async def claim(self, agent_id: str, session_id: str, max_sessions: int) -> Agent:
        """
        Check availability and capacity and take the session in one step.

        Raises:
            AgentUnavailable: Agent unknown, not available, or at capacity
        """
        async with self.lock:
            agent = self.agents.get(agent_id)
            if agent is None or agent.status != AgentStatus.AVAILABLE:
                raise AgentUnavailable(
                    f"Agent {agent_id} is not available",
                    session_id=session_id
                )
            if agent.owns(session_id):
                return agent.model_copy(deep=True)
            if not agent.has_capacity(max_sessions):
                raise AgentUnavailable(
                    f"Agent {agent.name} is at capacity ({max_sessions} sessions)",
                    session_id=session_id
                )
            return self._replace(
                agent,
                active_sessions=[*agent.active_sessions, session_id],
                last_active_at=utcnow()
            )

    async def release(self, agent_id: str, session_id: str) -> Optional[Agent]:
        """Forget a session; unknown agents are ignored."""
        async with self.lock:
            agent = self.agents.get(agent_id)
            if agent is None or not agent.owns(session_id):
                return None
            return self._replace(
                agent,
                active_sessions=[s for s in agent.active_sessions if s != session_id]
            )

    async def touch(self, agent_id: str) -> None:
        async with self.lock:
            agent = self.agents.get(agent_id)
            if agent is not None:
                self._replace(agent, last_active_at=utcnow())

    async def detach_connection(self, connection_id: str) -> Optional[str]:
        """Unbind a dropped connection; returns the agent id it belonged to."""
        async with self.lock:
            for agent in self.agents.values():
                if agent.connection_id == connection_id:
                    self._replace(agent, connection_id=None)
                    logger.info(f"Agent {agent.id} connection {connection_id} dropped")
                    return agent.id
        return None

    async def list_agents(self) -> List[Agent]:
        async with self.lock:
            return [agent.model_copy(deep=True) for agent in self.agents.values()]

    async def list_available(self) -> List[Agent]:
        async with self.lock:
            return [
                agent.model_copy(deep=True)
                for agent in self.agents.values()
                if agent.status == AgentStatus.AVAILABLE
            ]

    async def get_stats(self) -> Dict[str, int]:
        async with self.lock:
            by_status = {status.value: 0 for status in AgentStatus}
            for agent in self.agents.values():
                by_status[agent.status.value] += 1
            return {"total": len(self.agents), **by_status}


__all__ = ['AgentRegistry']
