"""
Collaborators of the coordinator: bot, escalation detection, knowledge base
and the transcript archive.
"""
from .bot_responder import BotReply, BotResponder, KnowledgeBaseBotResponder
from .escalation import EscalationDecision, EscalationDetector
from .knowledge_base import KnowledgeBaseClient, KnowledgeBaseError
from .transcript_service import TranscriptArchive

__all__ = [
    'BotReply',
    'BotResponder',
    'KnowledgeBaseBotResponder',
    'EscalationDecision',
    'EscalationDetector',
    'KnowledgeBaseClient',
    'KnowledgeBaseError',
    'TranscriptArchive',
]
