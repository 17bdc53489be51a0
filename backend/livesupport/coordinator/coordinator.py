"""
Support coordinator: the single writer of session, queue and agent state.

Every state-changing operation on a session runs under that session's lock,
so two agents racing to pick up the same session, or a close racing a
pickup, are serialised and exactly one of them wins. Events are published
to the connection hub while the lock is held, which keeps per-session event
order identical to the order of state changes.

Version: 1.0.0
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set

from ..config.settings import Settings
from ..exceptions import (
    AlreadyAssigned,
    AlreadyQueued,
    InvalidTransition,
    NotFound,
    NotOwner,
    SessionClosed,
    SupportError,
)
from ..models.agent import Agent, AgentStatus
from ..models.base import utcnow
from ..models.message import Message, SenderRole
from ..models.queue import Priority, QueueInfo
from ..models.schemas import SystemStats
from ..models.session import ChatSession, SessionStatus
from ..realtime import events
from ..realtime.hub import ConnectionHub
from ..services.bot_responder import BotReply, BotResponder
from ..services.escalation import EscalationDetector
from ..services.knowledge_base import KnowledgeBaseClient, KnowledgeBaseError
from ..services.transcript_service import TranscriptArchive
from ..session import InMemorySessionStore, LocalLockManager, SessionLockManager, SessionStore
from ..utils import telemetry
from .agent_registry import AgentRegistry
from .waiting_queue import WaitingQueue

logger = logging.getLogger(__name__)


@dataclass
class SupportState:
    """The three stores the coordinator mutates."""
    sessions: SessionStore
    queue: WaitingQueue
    agents: AgentRegistry

    @classmethod
    def in_memory(cls) -> "SupportState":
        sessions = InMemorySessionStore()
        return cls(sessions=sessions, queue=WaitingQueue(sessions), agents=AgentRegistry())


@dataclass
class Actor:
    """Who is asking: a customer connection or a registered agent."""
    connection_id: Optional[str] = None
    agent_id: Optional[str] = None

    @property
    def is_agent(self) -> bool:
        return self.agent_id is not None


@dataclass
class MaintenanceReport:
    purged: int = 0
    archived: int = 0
    errors: List[str] = field(default_factory=list)


class SupportCoordinator:
    """
    Applies customer and agent intents to the session state.

    Operations raise SupportError subclasses on rejection and leave state
    untouched when they do.
    """

    def __init__(
        self,
        state: SupportState,
        hub: ConnectionHub,
        settings: Settings,
        locks: Optional[SessionLockManager] = None,
        bot: Optional[BotResponder] = None,
        escalation: Optional[EscalationDetector] = None,
        archive: Optional[TranscriptArchive] = None,
        knowledge_base: Optional[KnowledgeBaseClient] = None
    ):
        self.state = state
        self.hub = hub
        self.settings = settings
        self.locks = locks or LocalLockManager()
        self.bot = bot
        self.escalation = escalation
        self.archive = archive
        self.knowledge_base = knowledge_base

        self._bot_turns: Dict[str, asyncio.Task] = {}
        self._bot_tasks: Set[asyncio.Task] = set()

    @property
    def sessions(self) -> SessionStore:
        return self.state.sessions

    @property
    def queue(self) -> WaitingQueue:
        return self.state.queue

    @property
    def agents(self) -> AgentRegistry:
        return self.state.agents

    # ===========================
    # Helpers
    # ===========================

    def _authorize_customer(self, actor: Actor, session: ChatSession) -> None:
        connection = self.hub.get(actor.connection_id) if actor.connection_id else None
        if connection is None or connection.customer_id != session.customer_id:
            raise NotOwner(
                "This connection does not own the session",
                session_id=session.id
            )

    async def _require_agent(self, agent_id: str) -> Agent:
        agent = await self.agents.find(agent_id)
        if agent is None:
            raise NotFound(f"Agent {agent_id} not found")
        return agent

    async def _append(
        self,
        session: ChatSession,
        content: str,
        sender: SenderRole,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Message:
        """Append and publish to the customer and the owning agent."""
        message = await self.sessions.append_message(session.id, content, sender, metadata)
        event = events.message_received(message)
        self.hub.to_customer(session.id, event)
        if session.assigned_agent:
            self.hub.to_agent(session.assigned_agent, event)
        telemetry.track_chat_message(sender.value)
        return message

    async def queue_view(self) -> List[Dict[str, Any]]:
        """Waiting session summaries in service order, for agent dashboards."""
        now = utcnow()
        summaries = []
        for position, entry in enumerate(self.queue.snapshot(), start=1):
            try:
                session = await self.sessions.get_session(entry.session_id)
            except NotFound:
                logger.warning(f"Queue entry for unknown session {entry.session_id}")
                continue
            summaries.append(session.summary(QueueInfo(
                session_id=entry.session_id,
                status=session.status.value,
                priority=entry.priority,
                wait_time=entry.wait_seconds(now),
                position=position
            )))
        return summaries

    async def _broadcast_queue(self) -> None:
        self.hub.to_agents(events.queue_update(await self.queue_view()))

    # ===========================
    # Customer operations
    # ===========================

    async def start_chat(
        self,
        connection_id: str,
        customer_id: str,
        bot_context: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ChatSession:
        """Create a bot session for the customer and bind the connection to it."""
        session = await self.sessions.create_session(customer_id, bot_context, metadata)
        self.hub.bind_customer(connection_id, session.id, customer_id)

        async with self.locks.lock(session.id):
            self.hub.to_customer(session.id, events.session_created(session))
            if self.settings.bot_greeting:
                await self._append(session, self.settings.bot_greeting, SenderRole.BOT)
            session = await self.sessions.get_session(session.id)

        telemetry.track_session_created()
        logger.info(f"Session {session.id} started for customer {customer_id}")
        return session

    async def resume_chat(self, connection_id: str, session_id: str, customer_id: str) -> ChatSession:
        """Re-attach a new connection to an existing session of the same customer."""
        session = await self.sessions.get_session(session_id)
        if session.customer_id != customer_id:
            raise NotOwner("Session belongs to another customer", session_id=session_id)

        self.hub.bind_customer(connection_id, session_id, customer_id)
        self.hub.to_connection(connection_id, events.session_state(session))
        logger.info(f"Connection {connection_id} resumed session {session_id}")
        return session

    async def customer_message(
        self,
        connection_id: str,
        session_id: str,
        content: str
    ) -> Message:
        """
        Record a customer message and, while the session is with the bot,
        run escalation detection and start the bot reply in the background.
        """
        async with self.locks.lock(session_id):
            session = await self.sessions.get_session(session_id)
            self._authorize_customer(Actor(connection_id=connection_id), session)
            if session.is_closed:
                raise SessionClosed(f"Session {session_id} is closed", session_id=session_id)

            message = await self._append(session, content, SenderRole.CUSTOMER)
            status = session.status

        if status != SessionStatus.BOT:
            return message

        if self.escalation is not None:
            decision = self.escalation.analyze(content)
            if decision.escalate:
                await self._escalate_from_bot(
                    session_id, decision.reason, decision.priority, source="customer"
                )
                return message

        if self.bot is not None:
            self._start_bot_turn(session_id, message)

        return message

    def _start_bot_turn(self, session_id: str, message: Message) -> asyncio.Task:
        """Answer in the background so the caller (a router worker) never waits on the bot."""
        previous = self._bot_turns.get(session_id)
        task = asyncio.create_task(
            self._bot_turn(session_id, message, previous),
            name=f"bot-reply-{session_id}"
        )
        self._bot_turns[session_id] = task
        self._bot_tasks.add(task)
        task.add_done_callback(lambda done: self._bot_turn_done(session_id, done))
        return task

    async def _bot_turn(
        self,
        session_id: str,
        message: Message,
        previous: Optional[asyncio.Task]
    ) -> None:
        # replies to one session go out in the order the questions came in
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        reply = await self._ask_bot(session_id, message)
        await self._deliver_bot_reply(session_id, reply)

    def _bot_turn_done(self, session_id: str, task: asyncio.Task) -> None:
        self._bot_tasks.discard(task)
        if self._bot_turns.get(session_id) is task:
            del self._bot_turns[session_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Bot reply for session {session_id} failed: {error}", exc_info=error)

    async def drain_bot_replies(self, timeout: Optional[float] = None) -> None:
        """
        Wait for pending bot replies. Replies still running after ``timeout``
        seconds are cancelled.
        """
        while self._bot_tasks:
            _, pending = await asyncio.wait(set(self._bot_tasks), timeout=timeout)
            if pending:
                logger.warning(f"Cancelling {len(pending)} unfinished bot replies")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                return

    async def _ask_bot(self, session_id: str, message: Message) -> BotReply:
        session = await self.sessions.get_session(session_id)
        try:
            return await self.bot.respond(session, message)
        except Exception as e:
            logger.error(f"Bot responder failed for session {session_id}: {e}", exc_info=True)
            return BotReply(
                content="Sorry, I ran into a problem answering that. "
                        "You can ask for a human agent at any time.",
                resolved=False
            )

    async def _deliver_bot_reply(self, session_id: str, reply: BotReply) -> None:
        async with self.locks.lock(session_id):
            session = await self.sessions.get_session(session_id)
            if session.status != SessionStatus.BOT:
                logger.debug(
                    f"Session {session_id} left bot status ({session.status.value}), "
                    "dropping bot reply"
                )
                return
            await self._append(session, reply.content, SenderRole.BOT, reply.message_metadata())

        if reply.escalate:
            await self._escalate_from_bot(session_id, reply.reason, reply.priority, source="bot")

    async def _escalate_from_bot(
        self,
        session_id: str,
        reason: Optional[str],
        priority: Priority,
        source: str
    ) -> None:
        try:
            await self._escalate(session_id, reason, priority, source)
        except (AlreadyQueued, InvalidTransition) as e:
            # the session moved on (queued, picked up or closed) in the meantime
            logger.debug(f"Automatic escalation of {session_id} skipped: {e}")

    async def request_agent(
        self,
        connection_id: str,
        session_id: str,
        reason: Optional[str] = None,
        priority: Optional[Priority] = None
    ) -> int:
        """
        Customer asks for a human: queue the session.

        Returns:
            1-based queue position
        """
        session = await self.sessions.get_session(session_id)
        self._authorize_customer(Actor(connection_id=connection_id), session)
        return await self._escalate(
            session_id,
            reason or "Customer requested a human agent",
            priority,
            source="customer"
        )

    async def _escalate(
        self,
        session_id: str,
        reason: Optional[str],
        priority: Optional[Priority],
        source: str
    ) -> int:
        async with self.locks.lock(session_id):
            session = await self.sessions.get_session(session_id)
            if session.is_closed:
                raise SessionClosed(f"Session {session_id} is closed", session_id=session_id)

            priority = priority or session.metadata.priority
            entry = await self.queue.enqueue(session_id, priority, reason)
            position = self.queue.position(session_id) or len(self.queue)

            self.hub.to_customer(
                session_id, events.status_changed(session_id, SessionStatus.WAITING)
            )
            session = await self.sessions.get_session(session_id)
            await self._append(
                session,
                "You've been placed in the queue for a human agent. "
                f"Your position: #{position}",
                SenderRole.SYSTEM
            )

            session = await self.sessions.get_session(session_id)
            self.hub.to_agents(events.customer_waiting(session, entry, position))
            await self._broadcast_queue()

        telemetry.track_escalation(source, entry.priority.value)
        logger.info(
            f"Session {session_id} escalated by {source} "
            f"({entry.priority.value} priority, position {position})"
        )
        return position

    # ===========================
    # Agent operations
    # ===========================

    async def agent_join(
        self,
        connection_id: str,
        name: str,
        agent_id: Optional[str] = None
    ) -> Agent:
        agent = await self.agents.register(connection_id, name, agent_id)
        self.hub.bind_agent(connection_id, agent.id)
        self.hub.to_connection(connection_id, events.agent_joined(agent))
        self.hub.to_connection(connection_id, events.queue_update(await self.queue_view()))
        return agent

    async def agent_leave(self, agent_id: str, connection_id: Optional[str] = None) -> Agent:
        """Go offline. Sessions the agent owns stay assigned to it."""
        agent = await self.agents.mark_offline(agent_id)
        if connection_id:
            self.hub.unbind_agent(connection_id)
        return agent

    async def set_agent_status(self, agent_id: str, status: AgentStatus) -> Agent:
        agent = await self.agents.set_status(agent_id, status)
        self.hub.to_agent(agent_id, events.agent_updated(agent))
        return agent

    async def pickup(self, agent_id: str, session_id: str) -> ChatSession:
        """
        Assign a waiting session to an agent. Exactly one of several
        concurrent pickups of the same session succeeds.

        Raises:
            NotFound: Unknown session
            AlreadyAssigned: Session is not waiting (lost race, closed, with bot)
            AgentUnavailable: Agent unknown, not available or at capacity
        """
        try:
            session = await self._pickup(agent_id, session_id)
        except SupportError as e:
            telemetry.track_pickup(e.code)
            raise

        telemetry.track_pickup("assigned")
        return session

    async def _pickup(self, agent_id: str, session_id: str) -> ChatSession:
        async with self.locks.lock(session_id):
            session = await self.sessions.get_session(session_id)
            if session.status != SessionStatus.WAITING:
                raise AlreadyAssigned(
                    f"Session {session_id} is no longer waiting ({session.status.value})",
                    session_id=session_id
                )

            agent = await self.agents.claim(
                agent_id, session_id, self.settings.max_sessions_per_agent
            )
            try:
                await self.sessions.set_status(session_id, SessionStatus.AGENT, agent_id)
            except SupportError:
                await self.agents.release(agent_id, session_id)
                raise
            await self.queue.remove(session_id)

            session = await self.sessions.get_session(session_id)
            assigned = events.session_assigned(session)
            self.hub.to_agent(agent_id, assigned)
            self.hub.to_customer(session_id, assigned)
            self.hub.to_customer(
                session_id,
                events.status_changed(session_id, SessionStatus.AGENT, agent.name)
            )

            # the agent already has the full transcript from session:assigned
            join_message = await self.sessions.append_message(
                session_id, f"{agent.name} has joined the chat.", SenderRole.SYSTEM
            )
            self.hub.to_customer(session_id, events.message_received(join_message))
            telemetry.track_chat_message(SenderRole.SYSTEM.value)

            await self._broadcast_queue()
            session = await self.sessions.get_session(session_id)

        logger.info(f"Session {session_id} picked up by agent {agent.name} ({agent_id})")
        return session

    async def agent_message(self, agent_id: str, session_id: str, content: str) -> Message:
        async with self.locks.lock(session_id):
            session = await self.sessions.get_session(session_id)
            if session.is_closed:
                raise SessionClosed(f"Session {session_id} is closed", session_id=session_id)
            if session.assigned_agent != agent_id:
                raise NotOwner(
                    f"Session {session_id} is not assigned to agent {agent_id}",
                    session_id=session_id
                )

            agent = await self._require_agent(agent_id)
            message = await self._append(
                session,
                content,
                SenderRole.AGENT,
                {"agentId": agent.id, "agentName": agent.name}
            )

        await self.agents.touch(agent_id)
        return message

    # ===========================
    # Shared operations
    # ===========================

    async def close_session(self, session_id: str, actor: Actor) -> bool:
        """
        Close a session from any open status.

        Closing an already closed session is a no-op and returns False, so
        repeated closes publish exactly one ``session:closed``.

        Raises:
            NotFound: Unknown session or agent
            NotOwner: Customer of another session, or agent of another agent's session
        """
        async with self.locks.lock(session_id):
            session = await self.sessions.get_session(session_id)
            if session.is_closed:
                logger.debug(f"Session {session_id} already closed")
                return False

            if actor.is_agent:
                await self._require_agent(actor.agent_id)
                if session.assigned_agent and session.assigned_agent != actor.agent_id:
                    raise NotOwner(
                        f"Session {session_id} is assigned to another agent",
                        session_id=session_id
                    )
            else:
                self._authorize_customer(actor, session)

            previous_status = session.status
            owner = session.assigned_agent

            if owner:
                await self.sessions.update_metadata(session_id, handled_by=owner)
            await self.sessions.set_status(session_id, SessionStatus.CLOSED)
            await self.queue.remove(session_id)
            if owner:
                await self.agents.release(owner, session_id)

            closed = events.session_closed(session_id)
            self.hub.to_customer(session_id, closed)
            notified_agent = owner or actor.agent_id
            if notified_agent:
                self.hub.to_agent(notified_agent, closed)

            if previous_status == SessionStatus.WAITING:
                await self._broadcast_queue()

        telemetry.track_session_closed(previous_status.value)
        logger.info(
            f"Session {session_id} closed from {previous_status.value} by "
            + (f"agent {actor.agent_id}" if actor.is_agent else "customer")
        )
        return True

    async def fetch_session(self, session_id: str, actor: Actor) -> ChatSession:
        """Full session state for its customer or any registered agent."""
        session = await self.sessions.get_session(session_id)
        if actor.is_agent:
            await self._require_agent(actor.agent_id)
        else:
            self._authorize_customer(actor, session)
        return session

    async def get_stats(self) -> SystemStats:
        sessions = await self.sessions.list_sessions()
        agents = await self.agents.list_agents()
        since = utcnow() - timedelta(hours=24)

        messages_last_24h = await self.sessions.count_messages_since(since)
        total_sessions = len(sessions)
        if self.archive is not None:
            messages_last_24h += await asyncio.to_thread(self.archive.count_messages_since, since)
            total_sessions += await asyncio.to_thread(self.archive.count_sessions)

        knowledge_base = None
        if self.knowledge_base is not None:
            try:
                knowledge_base = await self.knowledge_base.stats()
            except KnowledgeBaseError as e:
                logger.warning(f"Knowledge base stats unavailable: {e}")

        return SystemStats(
            total_sessions=total_sessions,
            active_sessions=sum(1 for s in sessions if not s.is_closed),
            queue_length=len(self.queue),
            total_agents=len(agents),
            available_agents=sum(1 for a in agents if a.status == AgentStatus.AVAILABLE),
            queue_breakdown=self.queue.breakdown(),
            avg_wait_time=self.queue.average_wait_seconds(),
            messages_last_24h=messages_last_24h,
            knowledge_base=knowledge_base
        )

    async def connection_closed(self, connection_id: str) -> None:
        """Transport dropped: unbind only, never touch session state."""
        self.hub.unregister(connection_id)
        await self.agents.detach_connection(connection_id)

    # ===========================
    # Maintenance
    # ===========================

    async def run_maintenance(self, retention_seconds: Optional[int] = None) -> MaintenanceReport:
        """
        Move closed sessions past retention out of memory (into the archive
        when one is configured) and refresh gauges.
        """
        report = MaintenanceReport()
        retention = (
            self.settings.closed_session_retention_seconds
            if retention_seconds is None else retention_seconds
        )

        purged = await self.sessions.purge_closed(utcnow() - timedelta(seconds=retention))
        report.purged = len(purged)

        if purged and self.archive is not None:
            try:
                report.archived = await asyncio.to_thread(self.archive.archive, purged)
            except Exception as e:
                logger.error(f"Failed to archive {len(purged)} transcripts: {e}", exc_info=True)
                report.errors.append(str(e))

        active = await self.sessions.list_active()
        available = await self.agents.list_available()
        telemetry.update_coordinator_gauges(len(active), len(self.queue), len(available))

        return report


__all__ = ['SupportState', 'SupportCoordinator', 'Actor', 'MaintenanceReport']
