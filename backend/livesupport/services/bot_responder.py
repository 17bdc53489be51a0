"""
Bot responder: answers customer messages while a session is in 'bot' status.

The coordinator calls ``respond`` outside the session lock and only appends
the reply if the session is still with the bot when the reply arrives.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config.bot_settings import BotSettings
from ..models.message import Message, SenderRole
from ..models.queue import Priority
from ..models.session import ChatSession
from .knowledge_base import KnowledgeBaseClient, KnowledgeBaseError

logger = logging.getLogger(__name__)

MAX_REPLY_LENGTH = 2000


@dataclass
class BotReply:
    """A bot answer plus the handoff signal, if any."""
    content: str
    resolved: bool = True
    escalate: bool = False
    reason: Optional[str] = None
    priority: Priority = Priority.NORMAL
    sources: List[Dict[str, Any]] = field(default_factory=list)

    def message_metadata(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"resolved": self.resolved}
        if self.sources:
            metadata["sources"] = self.sources
        return metadata


class BotResponder(ABC):
    """Produces the bot's reply to the latest customer message."""

    @abstractmethod
    async def respond(self, session: ChatSession, message: Message) -> BotReply:
        pass


def count_unresolved_replies(session: ChatSession) -> int:
    """Consecutive trailing bot replies that did not resolve the question."""
    unresolved = 0
    for message in reversed(session.messages):
        if message.sender != SenderRole.BOT:
            continue
        if (message.metadata or {}).get("resolved", True):
            break
        unresolved += 1
    return unresolved


class KnowledgeBaseBotResponder(BotResponder):
    """
    Answers from the best knowledge-base match above the similarity threshold.

    Without a match the customer gets the fallback reply; after
    ``max_unresolved_replies`` fallbacks in a row the reply asks for a handoff.
    Works without a knowledge base, in which case every answer is a fallback.
    """

    def __init__(
        self,
        knowledge_base: Optional[KnowledgeBaseClient],
        bot_settings: BotSettings
    ):
        self.knowledge_base = knowledge_base
        self.settings = bot_settings

    async def _search(self, query: str):
        if self.knowledge_base is None:
            return []
        try:
            return await self.knowledge_base.search(query, limit=self.settings.kb_search_limit)
        except KnowledgeBaseError as e:
            logger.warning(f"Knowledge base search failed, answering without it: {e}")
            return []

    async def respond(self, session: ChatSession, message: Message) -> BotReply:
        documents = await self._search(message.content)
        relevant = [
            doc for doc in documents
            if doc.similarity >= self.settings.kb_similarity_threshold
        ]

        if relevant:
            best = relevant[0]
            content = f"{best.title}\n\n{best.content}" if best.title else best.content
            return BotReply(
                content=content[:MAX_REPLY_LENGTH],
                sources=[
                    {"id": doc.id, "title": doc.title, "similarity": round(doc.similarity, 3)}
                    for doc in relevant
                ]
            )

        unresolved = count_unresolved_replies(session) + 1
        if unresolved >= self.settings.max_unresolved_replies:
            logger.info(
                f"Session {session.id}: {unresolved} unresolved bot replies, handing off"
            )
            return BotReply(
                content=self.settings.handoff_reply,
                resolved=False,
                escalate=True,
                reason=f"Bot could not resolve {unresolved} questions in a row"
            )

        return BotReply(content=self.settings.fallback_reply, resolved=False)


__all__ = [
    'BotReply',
    'BotResponder',
    'KnowledgeBaseBotResponder',
    'count_unresolved_replies',
]
