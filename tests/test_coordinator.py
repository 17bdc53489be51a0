"""
Tests for the support coordinator: bot conversation, escalation, pickup
races, agent messaging and close semantics.
"""
import asyncio

import pytest

from livesupport.coordinator import Actor, SupportCoordinator
from livesupport.database import Database
from livesupport.exceptions import (
    AgentUnavailable,
    AlreadyAssigned,
    AlreadyQueued,
    NotFound,
    NotOwner,
    SessionClosed,
)
from livesupport.models import AgentStatus, Priority, SenderRole, SessionStatus
from livesupport.services.bot_responder import BotReply
from livesupport.services.transcript_service import TranscriptArchive
from livesupport.session import LocalLockManager


def names(connection):
    return [event.name for event in connection.drain()]


async def assert_consistent(coordinator):
    """Cross-check sessions, queue and agents against each other."""
    sessions = await coordinator.sessions.list_sessions()
    agents = {agent.id: agent for agent in await coordinator.agents.list_agents()}

    for session in sessions:
        assert (session.status == SessionStatus.AGENT) == (session.assigned_agent is not None)
        assert (session.status == SessionStatus.WAITING) == (session.id in coordinator.queue)
        if session.status == SessionStatus.AGENT:
            assert session.id in agents[session.assigned_agent].active_sessions

    for agent in agents.values():
        for session_id in agent.active_sessions:
            session = await coordinator.sessions.get_session(session_id)
            assert session.assigned_agent == agent.id


# ===========================
# Bot conversation
# ===========================

@pytest.mark.unit
async def test_start_chat_sends_created_then_greeting(coordinator, hub):
    connection = hub.register("c1")

    session = await coordinator.start_chat("c1", "jane@example.com", metadata={"name": "Jane"})

    sent = connection.drain()
    assert [e.name for e in sent] == ["session:created", "message:received"]
    assert sent[1].data["content"] == "Hello! How can I help you today?"
    assert sent[1].data["sender"] == "bot"
    assert session.status == SessionStatus.BOT
    assert session.metadata.name == "Jane"
    assert session.message_count == 1


@pytest.mark.unit
async def test_bot_answers_customer_message(coordinator, start_customer, bot):
    connection, session = await start_customer()

    await coordinator.customer_message(connection.id, session.id, "Where is my order?")
    await coordinator.drain_bot_replies()

    sent = connection.drain()
    assert [e.data["sender"] for e in sent] == ["customer", "bot"]
    assert sent[1].data["content"] == "Echo: Where is my order?"
    assert bot.calls == ["Where is my order?"]


@pytest.mark.unit
async def test_bot_failure_falls_back_to_apology(coordinator, start_customer, bot):
    connection, session = await start_customer()

    async def broken(session, message):
        raise RuntimeError("model offline")
    bot.respond = broken

    await coordinator.customer_message(connection.id, session.id, "Where is my order?")
    await coordinator.drain_bot_replies()

    sent = connection.drain()
    assert sent[-1].data["sender"] == "bot"
    assert "human agent" in sent[-1].data["content"]
    refreshed = await coordinator.sessions.get_session(session.id)
    assert refreshed.status == SessionStatus.BOT


# ===========================
# Escalation
# ===========================

@pytest.mark.unit
async def test_keyword_escalation_queues_and_notifies(coordinator, start_customer, join_agent, bot):
    agent_connection, _ = await join_agent("alice")
    connection, session = await start_customer()

    await coordinator.customer_message(connection.id, session.id, "I want to talk to a human")

    sent = connection.drain()
    assert [e.name for e in sent] == ["message:received", "status:changed", "message:received"]
    assert sent[1].data == {"sessionId": session.id, "status": "waiting"}
    assert sent[2].data["sender"] == "system"
    assert sent[2].data["content"].endswith("#1")
    assert bot.calls == []

    assert names(agent_connection) == ["queue:customer_waiting", "queue:update"]
    refreshed = await coordinator.sessions.get_session(session.id)
    assert refreshed.status == SessionStatus.WAITING
    assert coordinator.queue.get(session.id).priority == Priority.NORMAL
    await assert_consistent(coordinator)


@pytest.mark.unit
async def test_urgent_keyword_escalates_with_high_priority(coordinator, start_customer):
    connection, session = await start_customer()

    await coordinator.customer_message(connection.id, session.id, "urgent: I need a human now")

    assert coordinator.queue.get(session.id).priority == Priority.HIGH


@pytest.mark.unit
async def test_bot_requested_escalation(coordinator, start_customer, bot):
    connection, session = await start_customer()
    bot.replies.append(BotReply(
        content="Let me connect you with a human agent.",
        escalate=True,
        reason="Bot could not resolve the question",
        priority=Priority.NORMAL
    ))

    await coordinator.customer_message(connection.id, session.id, "My invoice looks wrong")
    await coordinator.drain_bot_replies()

    sent = connection.drain()
    assert [e.name for e in sent] == [
        "message:received", "message:received", "status:changed", "message:received"
    ]
    entry = coordinator.queue.get(session.id)
    assert entry.reason == "Bot could not resolve the question"


@pytest.mark.unit
async def test_request_agent_returns_position(coordinator, start_customer):
    first, first_session = await start_customer("jane")
    second, second_session = await start_customer("john")

    assert await coordinator.request_agent(first.id, first_session.id) == 1
    assert await coordinator.request_agent(second.id, second_session.id) == 2
    assert coordinator.queue.get(first_session.id).reason == "Customer requested a human agent"


@pytest.mark.unit
async def test_request_agent_twice_is_rejected(coordinator, waiting_session):
    connection, session_id = await waiting_session()

    with pytest.raises(AlreadyQueued):
        await coordinator.request_agent(connection.id, session_id)
    assert len(coordinator.queue) == 1


@pytest.mark.unit
async def test_high_priority_jumps_the_queue(coordinator, waiting_session):
    await waiting_session("jane")
    _, vip = await waiting_session("john", priority=Priority.HIGH)

    assert coordinator.queue.position(vip) == 1


@pytest.mark.unit
async def test_metadata_priority_is_used_when_none_given(coordinator, start_customer):
    connection, session = await start_customer(metadata={"priority": "high"})

    await coordinator.request_agent(connection.id, session.id)

    assert coordinator.queue.get(session.id).priority == Priority.HIGH


@pytest.mark.unit
async def test_request_agent_from_foreign_connection(coordinator, start_customer):
    _, session = await start_customer("jane")
    intruder, _ = await start_customer("mallory")

    with pytest.raises(NotOwner):
        await coordinator.request_agent(intruder.id, session.id)
    assert session.id not in coordinator.queue


@pytest.mark.unit
async def test_customer_messages_while_waiting_skip_the_bot(coordinator, waiting_session, bot):
    connection, session_id = await waiting_session()

    await coordinator.customer_message(connection.id, session_id, "Still there?")

    assert names(connection) == ["message:received"]
    assert bot.calls == []
    assert coordinator.queue.position(session_id) == 1


@pytest.mark.unit
async def test_late_bot_reply_is_dropped_after_escalation(coordinator, start_customer, bot):
    connection, session = await start_customer()
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow(session, message):
        started.set()
        await release.wait()
        return BotReply(content="Here is the answer")
    bot.respond = slow

    pending = asyncio.create_task(
        coordinator.customer_message(connection.id, session.id, "Where is my order?")
    )
    await started.wait()
    await coordinator.request_agent(connection.id, session.id)
    release.set()
    await pending
    await coordinator.drain_bot_replies()

    refreshed = await coordinator.sessions.get_session(session.id)
    assert "Here is the answer" not in [m.content for m in refreshed.messages]
    assert refreshed.status == SessionStatus.WAITING


@pytest.mark.unit
async def test_bot_replies_keep_question_order(coordinator, start_customer, bot):
    connection, session = await start_customer()
    release = asyncio.Event()

    async def uneven(session, message):
        if message.content == "first":
            await release.wait()
        return BotReply(content=f"re: {message.content}")
    bot.respond = uneven

    await coordinator.customer_message(connection.id, session.id, "first")
    await coordinator.customer_message(connection.id, session.id, "second")
    await asyncio.sleep(0.01)
    release.set()
    await coordinator.drain_bot_replies()

    refreshed = await coordinator.sessions.get_session(session.id)
    assert [m.content for m in refreshed.messages[1:]] == [
        "first", "second", "re: first", "re: second"
    ]


@pytest.mark.unit
async def test_drain_cancels_replies_past_timeout(coordinator, start_customer, bot):
    connection, session = await start_customer()
    never = asyncio.Event()

    async def stuck(session, message):
        await never.wait()
    bot.respond = stuck

    await coordinator.customer_message(connection.id, session.id, "Where is my order?")
    await asyncio.wait_for(coordinator.drain_bot_replies(timeout=0.05), timeout=1)

    refreshed = await coordinator.sessions.get_session(session.id)
    assert [m.sender for m in refreshed.messages] == [SenderRole.BOT, SenderRole.CUSTOMER]
    assert refreshed.status == SessionStatus.BOT


# ===========================
# Pickup
# ===========================

@pytest.mark.unit
async def test_pickup_assigns_and_notifies(coordinator, waiting_session, join_agent):
    agent_connection, agent = await join_agent("alice")
    observer, _ = await join_agent("bob")
    connection, session_id = await waiting_session()
    agent_connection.drain()
    observer.drain()

    session = await coordinator.pickup(agent.id, session_id)

    assert session.status == SessionStatus.AGENT
    assert session.assigned_agent == agent.id
    assert session_id not in coordinator.queue

    customer_events = connection.drain()
    assert [e.name for e in customer_events] == [
        "session:assigned", "status:changed", "message:received"
    ]
    assert customer_events[1].data["agentName"] == "alice"
    assert customer_events[2].data["content"] == "alice has joined the chat."

    assert names(agent_connection) == ["session:assigned", "queue:update"]
    assert names(observer) == ["queue:update"]

    refreshed_agent = await coordinator.agents.get(agent.id)
    assert refreshed_agent.active_sessions == [session_id]
    await assert_consistent(coordinator)


@pytest.mark.unit
async def test_concurrent_pickups_have_exactly_one_winner(coordinator, waiting_session, join_agent):
    _, alice = await join_agent("alice")
    _, bob = await join_agent("bob")
    connection, session_id = await waiting_session()

    results = await asyncio.gather(
        coordinator.pickup(alice.id, session_id),
        coordinator.pickup(bob.id, session_id),
        return_exceptions=True
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], AlreadyAssigned)

    status_events = [e for e in connection.drain() if e.name == "status:changed"]
    assert len(status_events) == 1
    await assert_consistent(coordinator)


@pytest.mark.unit
async def test_pickup_of_bot_or_closed_session_is_rejected(coordinator, start_customer, join_agent):
    _, agent = await join_agent("alice")
    connection, session = await start_customer()

    with pytest.raises(AlreadyAssigned):
        await coordinator.pickup(agent.id, session.id)

    await coordinator.close_session(session.id, Actor(connection_id=connection.id))
    with pytest.raises(AlreadyAssigned):
        await coordinator.pickup(agent.id, session.id)


@pytest.mark.unit
async def test_pickup_of_unknown_session(coordinator, join_agent):
    _, agent = await join_agent("alice")

    with pytest.raises(NotFound):
        await coordinator.pickup(agent.id, "missing")


@pytest.mark.unit
@pytest.mark.parametrize("status", [AgentStatus.BUSY, AgentStatus.OFFLINE])
async def test_pickup_requires_available_agent(coordinator, waiting_session, join_agent, status):
    _, agent = await join_agent("alice")
    await coordinator.agents.set_status(agent.id, status)
    _, session_id = await waiting_session()

    with pytest.raises(AgentUnavailable):
        await coordinator.pickup(agent.id, session_id)
    assert coordinator.queue.position(session_id) == 1


@pytest.mark.unit
async def test_pickup_by_unknown_agent(coordinator, waiting_session):
    _, session_id = await waiting_session()

    with pytest.raises(AgentUnavailable):
        await coordinator.pickup("ghost", session_id)


@pytest.mark.unit
async def test_pickup_respects_capacity(coordinator, waiting_session, join_agent):
    _, agent = await join_agent("alice")
    for name in ("jane", "john"):
        _, session_id = await waiting_session(name)
        await coordinator.pickup(agent.id, session_id)

    _, third = await waiting_session("jim")
    with pytest.raises(AgentUnavailable, match="capacity"):
        await coordinator.pickup(agent.id, third)
    await assert_consistent(coordinator)


@pytest.mark.unit
async def test_concurrent_pickups_by_one_agent_respect_capacity(coordinator, waiting_session, join_agent):
    _, agent = await join_agent("alice")
    session_ids = [(await waiting_session(name))[1] for name in ("jane", "john", "jim")]

    results = await asyncio.gather(
        *(coordinator.pickup(agent.id, session_id) for session_id in session_ids),
        return_exceptions=True
    )

    failures = [result for result in results if isinstance(result, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], AgentUnavailable)
    assert len((await coordinator.agents.get(agent.id)).active_sessions) == 2
    assert len(coordinator.queue) == 1
    await assert_consistent(coordinator)


# ===========================
# Agent messaging
# ===========================

@pytest.mark.unit
async def test_agent_message_reaches_customer(coordinator, waiting_session, join_agent):
    agent_connection, agent = await join_agent("alice")
    connection, session_id = await waiting_session()
    await coordinator.pickup(agent.id, session_id)
    connection.drain()
    agent_connection.drain()

    message = await coordinator.agent_message(agent.id, session_id, "Hi, I'm Alice.")

    assert message.sender == SenderRole.AGENT
    assert message.metadata == {"agentId": agent.id, "agentName": "alice"}
    assert names(connection) == ["message:received"]
    assert names(agent_connection) == ["message:received"]


@pytest.mark.unit
async def test_customer_message_reaches_assigned_agent(coordinator, waiting_session, join_agent, bot):
    agent_connection, agent = await join_agent("alice")
    connection, session_id = await waiting_session()
    await coordinator.pickup(agent.id, session_id)
    agent_connection.drain()

    await coordinator.customer_message(connection.id, session_id, "Thanks for helping")

    sent = agent_connection.drain()
    assert [e.data["content"] for e in sent] == ["Thanks for helping"]
    assert bot.calls == []


@pytest.mark.unit
async def test_agent_message_to_foreign_session(coordinator, waiting_session, join_agent):
    _, alice = await join_agent("alice")
    _, bob = await join_agent("bob")
    _, session_id = await waiting_session()

    with pytest.raises(NotOwner):
        await coordinator.agent_message(bob.id, session_id, "hello")

    await coordinator.pickup(alice.id, session_id)
    with pytest.raises(NotOwner):
        await coordinator.agent_message(bob.id, session_id, "hello")


@pytest.mark.unit
async def test_messages_to_closed_session_are_rejected(coordinator, waiting_session, join_agent):
    _, agent = await join_agent("alice")
    connection, session_id = await waiting_session()
    await coordinator.pickup(agent.id, session_id)
    await coordinator.close_session(session_id, Actor(agent_id=agent.id))

    with pytest.raises(SessionClosed):
        await coordinator.agent_message(agent.id, session_id, "one more thing")
    with pytest.raises(SessionClosed):
        await coordinator.customer_message(connection.id, session_id, "one more thing")


# ===========================
# Close
# ===========================

@pytest.mark.unit
async def test_close_is_idempotent(coordinator, waiting_session, join_agent):
    agent_connection, agent = await join_agent("alice")
    connection, session_id = await waiting_session()
    await coordinator.pickup(agent.id, session_id)
    connection.drain()
    agent_connection.drain()

    assert await coordinator.close_session(session_id, Actor(agent_id=agent.id)) is True
    assert await coordinator.close_session(session_id, Actor(agent_id=agent.id)) is False
    assert await coordinator.close_session(session_id, Actor(connection_id=connection.id)) is False

    assert names(connection) == ["session:closed"]
    assert names(agent_connection) == ["session:closed"]

    session = await coordinator.sessions.get_session(session_id)
    assert session.status == SessionStatus.CLOSED
    assert session.assigned_agent is None
    assert session.closed_at is not None
    assert (await coordinator.agents.get(agent.id)).active_sessions == []


@pytest.mark.unit
async def test_closing_waiting_session_leaves_queue(coordinator, waiting_session, join_agent):
    agent_connection, _ = await join_agent("alice")
    connection, session_id = await waiting_session()
    agent_connection.drain()

    await coordinator.close_session(session_id, Actor(connection_id=connection.id))

    assert session_id not in coordinator.queue
    assert names(agent_connection) == ["queue:update"]
    await assert_consistent(coordinator)


@pytest.mark.unit
async def test_close_authorization(coordinator, waiting_session, join_agent, start_customer):
    _, alice = await join_agent("alice")
    _, bob = await join_agent("bob")
    _, session_id = await waiting_session("jane")
    intruder, _ = await start_customer("mallory")
    await coordinator.pickup(alice.id, session_id)

    with pytest.raises(NotOwner):
        await coordinator.close_session(session_id, Actor(connection_id=intruder.id))
    with pytest.raises(NotOwner):
        await coordinator.close_session(session_id, Actor(agent_id=bob.id))
    with pytest.raises(NotFound):
        await coordinator.close_session(session_id, Actor(agent_id="ghost"))

    session = await coordinator.sessions.get_session(session_id)
    assert session.status == SessionStatus.AGENT


@pytest.mark.unit
async def test_close_racing_pickup_stays_consistent(coordinator, waiting_session, join_agent):
    _, agent = await join_agent("alice")
    connection, session_id = await waiting_session()

    await asyncio.gather(
        coordinator.close_session(session_id, Actor(connection_id=connection.id)),
        coordinator.pickup(agent.id, session_id),
        return_exceptions=True
    )

    session = await coordinator.sessions.get_session(session_id)
    assert session.status == SessionStatus.CLOSED
    assert session.assigned_agent is None
    assert (await coordinator.agents.get(agent.id)).active_sessions == []
    await assert_consistent(coordinator)


# ===========================
# Connections and agents
# ===========================

@pytest.mark.unit
async def test_connection_drop_leaves_sessions_untouched(coordinator, hub, waiting_session, join_agent):
    agent_connection, agent = await join_agent("alice")
    connection, session_id = await waiting_session()
    await coordinator.pickup(agent.id, session_id)

    await coordinator.connection_closed(connection.id)
    await coordinator.connection_closed(agent_connection.id)

    session = await coordinator.sessions.get_session(session_id)
    assert session.status == SessionStatus.AGENT
    assert session.assigned_agent == agent.id
    detached = await coordinator.agents.get(agent.id)
    assert detached.connection_id is None
    assert detached.active_sessions == [session_id]
    assert hub.connection_count == 0


@pytest.mark.unit
async def test_rejoin_keeps_assigned_sessions(coordinator, hub, waiting_session, join_agent):
    agent_connection, agent = await join_agent("alice")
    _, session_id = await waiting_session()
    await coordinator.pickup(agent.id, session_id)
    await coordinator.connection_closed(agent_connection.id)

    replacement = hub.register("alice-new-tab")
    rejoined = await coordinator.agent_join(replacement.id, "alice", agent.id)

    assert rejoined.id == agent.id
    assert rejoined.active_sessions == [session_id]
    assert names(replacement) == ["agent:joined", "queue:update"]

    await coordinator.agent_message(agent.id, session_id, "Sorry, my connection dropped")
    assert names(replacement) == ["message:received"]


@pytest.mark.unit
async def test_leave_goes_offline_but_keeps_sessions(coordinator, hub, waiting_session, join_agent):
    agent_connection, agent = await join_agent("alice")
    _, session_id = await waiting_session()
    await coordinator.pickup(agent.id, session_id)

    left = await coordinator.agent_leave(agent.id, agent_connection.id)

    assert left.status == AgentStatus.OFFLINE
    assert left.active_sessions == [session_id]
    assert agent_connection.agent_id is None
    await assert_consistent(coordinator)


@pytest.mark.unit
async def test_set_agent_status_notifies_agent(coordinator, join_agent):
    agent_connection, agent = await join_agent("alice")

    updated = await coordinator.set_agent_status(agent.id, AgentStatus.BUSY)

    assert updated.status == AgentStatus.BUSY
    sent = agent_connection.drain()
    assert [e.name for e in sent] == ["agent:updated"]
    assert sent[0].data["agent"]["status"] == "busy"


# ===========================
# Queries
# ===========================

@pytest.mark.unit
async def test_fetch_and_resume_authorization(coordinator, hub, start_customer, join_agent):
    connection, session = await start_customer("jane")
    intruder, _ = await start_customer("mallory")
    _, agent = await join_agent("alice")

    assert (await coordinator.fetch_session(session.id, Actor(connection_id=connection.id))).id == session.id
    assert (await coordinator.fetch_session(session.id, Actor(agent_id=agent.id))).id == session.id
    with pytest.raises(NotOwner):
        await coordinator.fetch_session(session.id, Actor(connection_id=intruder.id))

    new_tab = hub.register("jane-tab-2")
    with pytest.raises(NotOwner):
        await coordinator.resume_chat(new_tab.id, session.id, "mallory@example.com")

    resumed = await coordinator.resume_chat(new_tab.id, session.id, "jane@example.com")
    assert resumed.id == session.id
    assert names(new_tab) == ["session:state"]

    await coordinator.customer_message(connection.id, session.id, "Where is my order?")
    await coordinator.drain_bot_replies()
    assert names(new_tab) == ["message:received", "message:received"]


@pytest.mark.unit
async def test_stats(coordinator, waiting_session, join_agent):
    _, agent = await join_agent("alice")
    await join_agent("bob")
    _, picked = await waiting_session("jane")
    await waiting_session("john", priority=Priority.HIGH)
    await coordinator.pickup(agent.id, picked)

    stats = await coordinator.get_stats()

    assert stats.total_sessions == 2
    assert stats.active_sessions == 2
    assert stats.queue_length == 1
    assert stats.total_agents == 2
    assert stats.available_agents == 2
    assert stats.queue_breakdown.high == 1
    assert stats.messages_last_24h > 0
    assert stats.knowledge_base is None


@pytest.mark.unit
async def test_queue_view_carries_queue_info(coordinator, waiting_session):
    _, session_id = await waiting_session()

    view = await coordinator.queue_view()

    assert len(view) == 1
    assert view[0]["id"] == session_id
    assert view[0]["queueInfo"]["position"] == 1
    assert view[0]["queueInfo"]["priority"] == "normal"


# ===========================
# Maintenance
# ===========================

@pytest.mark.unit
async def test_maintenance_archives_closed_sessions(state, hub, test_settings, bot):
    database = Database("sqlite:///:memory:")
    database.init_db()
    archive = TranscriptArchive(database)
    coordinator = SupportCoordinator(
        state=state, hub=hub, settings=test_settings,
        locks=LocalLockManager(), bot=bot, archive=archive
    )
    connection = hub.register("c1")
    session = await coordinator.start_chat("c1", "jane@example.com")
    await coordinator.customer_message(connection.id, session.id, "Where is my order?")
    await coordinator.drain_bot_replies()
    await coordinator.close_session(session.id, Actor(connection_id=connection.id))
    await asyncio.sleep(0.01)

    report = await coordinator.run_maintenance(retention_seconds=0)

    assert report.purged == 1
    assert report.archived == 1
    assert not await coordinator.sessions.exists(session.id)
    transcript = archive.get_transcript(session.id)
    assert transcript["status"] == "closed"
    assert len(transcript["messages"]) == 3

    stats = await coordinator.get_stats()
    assert stats.total_sessions == 1
    assert stats.messages_last_24h == 3
    database.dispose()


@pytest.mark.unit
async def test_maintenance_keeps_recent_closed_sessions(coordinator, start_customer):
    connection, session = await start_customer()
    await coordinator.close_session(session.id, Actor(connection_id=connection.id))

    report = await coordinator.run_maintenance()

    assert report.purged == 0
    assert await coordinator.sessions.exists(session.id)
