"""
Tests for the knowledge-base backed bot responder.
"""
import pytest
from unittest.mock import AsyncMock

from livesupport.config import BotSettings
from livesupport.models import ChatSession, KnowledgeDocument, Message, SenderRole
from livesupport.services.bot_responder import (
    KnowledgeBaseBotResponder,
    count_unresolved_replies,
)
from livesupport.services.knowledge_base import KnowledgeBaseError


def make_session(*turns):
    """Build a session from (sender, content, resolved) turns."""
    session = ChatSession(id="s1", customer_id="c1")
    messages = [
        Message(
            session_id="s1",
            content=content,
            sender=sender,
            metadata={"resolved": resolved} if resolved is not None else None
        )
        for sender, content, resolved in turns
    ]
    return session.model_copy(update={"messages": messages})


def customer_message(content):
    return Message(session_id="s1", content=content, sender=SenderRole.CUSTOMER)


@pytest.fixture
def bot_settings():
    return BotSettings(kb_similarity_threshold=0.7, kb_search_limit=3, max_unresolved_replies=3)


@pytest.fixture
def knowledge_base():
    kb = AsyncMock()
    kb.search.return_value = []
    return kb


@pytest.mark.unit
async def test_answers_from_best_document(knowledge_base, bot_settings):
    knowledge_base.search.return_value = [
        KnowledgeDocument(id=1, title="Refunds", content="Full refunds within 30 days.", similarity=0.92),
        KnowledgeDocument(id=2, title="Shipping", content="3-5 business days.", similarity=0.75),
        KnowledgeDocument(id=3, title="Warranty", content="One year.", similarity=0.4),
    ]
    responder = KnowledgeBaseBotResponder(knowledge_base, bot_settings)

    reply = await responder.respond(make_session(), customer_message("Can I get a refund?"))

    knowledge_base.search.assert_awaited_once_with("Can I get a refund?", limit=3)
    assert reply.content == "Refunds\n\nFull refunds within 30 days."
    assert reply.resolved
    assert not reply.escalate
    assert [source["id"] for source in reply.sources] == [1, 2]
    assert reply.message_metadata()["resolved"] is True


@pytest.mark.unit
async def test_falls_back_below_threshold(knowledge_base, bot_settings):
    knowledge_base.search.return_value = [
        KnowledgeDocument(id=1, title="Warranty", content="One year.", similarity=0.3),
    ]
    responder = KnowledgeBaseBotResponder(knowledge_base, bot_settings)

    reply = await responder.respond(make_session(), customer_message("Where is my order?"))

    assert reply.content == bot_settings.fallback_reply
    assert not reply.resolved
    assert not reply.escalate
    assert reply.message_metadata() == {"resolved": False}


@pytest.mark.unit
async def test_knowledge_base_failure_falls_back(knowledge_base, bot_settings):
    knowledge_base.search.side_effect = KnowledgeBaseError("unavailable")
    responder = KnowledgeBaseBotResponder(knowledge_base, bot_settings)

    reply = await responder.respond(make_session(), customer_message("Hello?"))

    assert reply.content == bot_settings.fallback_reply
    assert not reply.resolved


@pytest.mark.unit
async def test_works_without_knowledge_base(bot_settings):
    responder = KnowledgeBaseBotResponder(None, bot_settings)

    reply = await responder.respond(make_session(), customer_message("Hello?"))

    assert reply.content == bot_settings.fallback_reply


@pytest.mark.unit
async def test_hands_off_after_repeated_fallbacks(knowledge_base, bot_settings):
    session = make_session(
        (SenderRole.BOT, "Hello!", None),
        (SenderRole.CUSTOMER, "question 1", None),
        (SenderRole.BOT, "fallback", False),
        (SenderRole.CUSTOMER, "question 2", None),
        (SenderRole.BOT, "fallback", False),
        (SenderRole.CUSTOMER, "question 3", None),
    )
    responder = KnowledgeBaseBotResponder(knowledge_base, bot_settings)

    reply = await responder.respond(session, customer_message("question 3"))

    assert reply.escalate
    assert not reply.resolved
    assert reply.content == bot_settings.handoff_reply
    assert "3" in reply.reason


@pytest.mark.unit
def test_count_unresolved_stops_at_resolved_reply():
    session = make_session(
        (SenderRole.BOT, "fallback", False),
        (SenderRole.BOT, "answer", True),
        (SenderRole.CUSTOMER, "thanks, another one", None),
        (SenderRole.BOT, "fallback", False),
        (SenderRole.SYSTEM, "note", None),
    )

    assert count_unresolved_replies(session) == 1
    assert count_unresolved_replies(make_session()) == 0
