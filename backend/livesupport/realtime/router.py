"""
Event router: validates inbound intents and applies them through the
coordinator.

Commands are sharded over a fixed pool of worker tasks by session id (or by
connection id for intents that carry none), so intents for the same session
are handled in arrival order while different sessions proceed in parallel.
Every rejection becomes exactly one ``error`` event for the originating
connection; nothing a client sends can stop a worker.

Version: 1.0.0
"""
import asyncio
import logging
import time
import zlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..coordinator.coordinator import Actor, SupportCoordinator
from ..exceptions import InternalError, InvalidIntent, NotFound, SupportError
from ..models.agent import AgentStatus
from ..models.base import utcnow
from ..utils.telemetry import MetricsCollector, metrics_collector
from . import events
from .events import Inbound
from .hub import ConnectionHub
from .intents import (
    AgentJoinIntent,
    AgentStatusIntent,
    MessageIntent,
    RequestAgentIntent,
    ResumeIntent,
    SessionIntent,
    StartChatIntent,
)

logger = logging.getLogger(__name__)


@dataclass
class Command:
    """One inbound intent from a connection."""
    connection_id: str
    event: str
    data: Dict[str, Any] = field(default_factory=dict)
    received_at: datetime = field(default_factory=utcnow)

    @property
    def shard_key(self) -> str:
        session_id = self.data.get("sessionId") if isinstance(self.data, dict) else None
        return str(session_id) if session_id else self.connection_id


Handler = Callable[[Command], Awaitable[None]]


class EventRouter:
    """Dispatch table from intent names to coordinator operations."""

    def __init__(
        self,
        coordinator: SupportCoordinator,
        hub: ConnectionHub,
        workers: int = 4,
        queue_size: int = 1000,
        metrics: Optional[MetricsCollector] = None
    ):
        self.coordinator = coordinator
        self.hub = hub
        self.workers = max(workers, 1)
        self.queue_size = queue_size
        self.metrics = metrics or metrics_collector

        self._queues: List["asyncio.Queue[Command]"] = []
        self._tasks: List[asyncio.Task] = []

        self.handlers: Dict[str, Handler] = {
            Inbound.START_CHAT: self._start_chat,
            Inbound.SEND_MESSAGE: self._customer_message,
            Inbound.REQUEST_AGENT: self._request_agent,
            Inbound.END_CHAT: self._end_chat,
            Inbound.RESUME: self._resume,
            Inbound.AGENT_JOIN: self._agent_join,
            Inbound.AGENT_LEAVE: self._agent_leave,
            Inbound.AGENT_SET_STATUS: self._agent_set_status,
            Inbound.PICKUP: self._pickup,
            Inbound.AGENT_MESSAGE: self._agent_message,
            Inbound.CLOSE_SESSION: self._close_session,
            Inbound.GET_STATS: self._get_stats,
            Inbound.FETCH_SESSION: self._fetch_session,
        }

    # ===========================
    # Worker pool
    # ===========================

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self._queues = [asyncio.Queue(maxsize=self.queue_size) for _ in range(self.workers)]
        self._tasks = [
            asyncio.create_task(self._worker(index), name=f"event-router-{index}")
            for index in range(self.workers)
        ]
        logger.info(f"Event router started with {self.workers} workers")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._queues = []
        logger.info("Event router stopped")

    def shard_for(self, command: Command) -> int:
        return zlib.crc32(command.shard_key.encode("utf-8")) % self.workers

    async def submit(self, command: Command) -> None:
        """Queue a command on its shard; without workers, handle it inline."""
        if not self.running:
            await self.dispatch(command)
            return
        await self._queues[self.shard_for(command)].put(command)

    async def join(self) -> None:
        """Wait until every queued command has been handled."""
        await asyncio.gather(*(queue.join() for queue in self._queues))

    async def _worker(self, index: int) -> None:
        queue = self._queues[index]
        while True:
            command = await queue.get()
            try:
                await self.dispatch(command)
            finally:
                queue.task_done()

    # ===========================
    # Dispatch
    # ===========================

    async def dispatch(self, command: Command) -> None:
        start_time = time.perf_counter()
        outcome = "ok"

        try:
            handler = self.handlers.get(command.event)
            if handler is None:
                raise InvalidIntent(f"Unknown event '{command.event}'")
            if not isinstance(command.data, dict):
                raise InvalidIntent(f"Payload of '{command.event}' must be an object")
            await handler(command)

        except ValidationError as e:
            outcome = InvalidIntent.code
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            self._reject(command, InvalidIntent(f"Invalid '{command.event}' payload: {details}"))

        except SupportError as e:
            outcome = e.code
            self._reject(command, e)

        except Exception as e:
            outcome = "internal_error"
            logger.error(
                f"Unhandled error processing '{command.event}' from {command.connection_id}: {e}",
                exc_info=True
            )
            self._reject(command, InternalError("Internal error processing request"))

        finally:
            self.metrics.record_intent(command.event, outcome, time.perf_counter() - start_time)

    def _reject(self, command: Command, error: SupportError) -> None:
        logger.info(
            f"Rejected '{command.event}' from {command.connection_id}: "
            f"{error.code} ({error.message})"
        )
        self.hub.to_connection(command.connection_id, events.error(error))

    def _agent_id(self, command: Command) -> str:
        connection = self.hub.get(command.connection_id)
        if connection is None or not connection.agent_id:
            raise NotFound("Connection has not joined as an agent; send agent:join first")
        return connection.agent_id

    def _actor(self, command: Command) -> Actor:
        connection = self.hub.get(command.connection_id)
        if connection is not None and connection.agent_id:
            return Actor(connection_id=command.connection_id, agent_id=connection.agent_id)
        return Actor(connection_id=command.connection_id)

    # ===========================
    # Customer intents
    # ===========================

    async def _start_chat(self, command: Command) -> None:
        intent = StartChatIntent.model_validate(command.data)
        await self.coordinator.start_chat(
            command.connection_id,
            intent.user_id,
            bot_context=intent.bot_context,
            metadata=intent.metadata
        )

    async def _customer_message(self, command: Command) -> None:
        intent = MessageIntent.model_validate(command.data)
        await self.coordinator.customer_message(
            command.connection_id, intent.session_id, intent.content
        )

    async def _request_agent(self, command: Command) -> None:
        intent = RequestAgentIntent.model_validate(command.data)
        await self.coordinator.request_agent(
            command.connection_id,
            intent.session_id,
            reason=intent.reason,
            priority=intent.priority
        )

    async def _end_chat(self, command: Command) -> None:
        intent = SessionIntent.model_validate(command.data)
        await self.coordinator.close_session(
            intent.session_id, Actor(connection_id=command.connection_id)
        )

    async def _resume(self, command: Command) -> None:
        intent = ResumeIntent.model_validate(command.data)
        await self.coordinator.resume_chat(
            command.connection_id, intent.session_id, intent.user_id
        )

    # ===========================
    # Agent intents
    # ===========================

    async def _agent_join(self, command: Command) -> None:
        intent = AgentJoinIntent.model_validate(command.data)
        await self.coordinator.agent_join(command.connection_id, intent.name, intent.agent_id)

    async def _agent_leave(self, command: Command) -> None:
        await self.coordinator.agent_leave(self._agent_id(command), command.connection_id)

    async def _agent_set_status(self, command: Command) -> None:
        intent = AgentStatusIntent.model_validate(command.data)
        await self.coordinator.set_agent_status(
            self._agent_id(command), AgentStatus(intent.status)
        )

    async def _pickup(self, command: Command) -> None:
        intent = SessionIntent.model_validate(command.data)
        await self.coordinator.pickup(self._agent_id(command), intent.session_id)

    async def _agent_message(self, command: Command) -> None:
        intent = MessageIntent.model_validate(command.data)
        await self.coordinator.agent_message(
            self._agent_id(command), intent.session_id, intent.content
        )

    async def _close_session(self, command: Command) -> None:
        intent = SessionIntent.model_validate(command.data)
        actor = Actor(connection_id=command.connection_id, agent_id=self._agent_id(command))
        await self.coordinator.close_session(intent.session_id, actor)

    # ===========================
    # Shared intents
    # ===========================

    async def _get_stats(self, command: Command) -> None:
        self._agent_id(command)
        stats = await self.coordinator.get_stats()
        self.hub.to_connection(command.connection_id, events.stats_update(stats))

    async def _fetch_session(self, command: Command) -> None:
        intent = SessionIntent.model_validate(command.data)
        session = await self.coordinator.fetch_session(intent.session_id, self._actor(command))
        self.hub.to_connection(command.connection_id, events.session_state(session))


__all__ = ['Command', 'EventRouter']
