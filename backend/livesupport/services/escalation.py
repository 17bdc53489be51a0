"""
Escalation detection for customer messages handled by the bot.

A message escalates when it explicitly asks for a person or when its
weighted keyword score reaches the configured threshold. Urgency keywords
raise the queue priority of the resulting handoff.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from ..config.bot_settings import BotSettings
from ..models.queue import Priority

logger = logging.getLogger(__name__)

EXPLICIT_REQUEST_PATTERNS = [
    r'\b(speak|talk|chat)\s+(to|with)\s+(a|an|the|your)?\s*(human|person|agent|representative)\b',
    r'\bget\s+me\s+(a|an|the|your)?\s*(human|agent|manager|supervisor)\b',
    r'\b(transfer|escalate|connect)\s+me\b',
    r'\breal\s+person\b',
]


@dataclass
class EscalationDecision:
    """Outcome of analysing one customer message."""
    escalate: bool
    confidence: float = 0.0
    priority: Priority = Priority.NORMAL
    reason: Optional[str] = None
    found_keywords: List[str] = field(default_factory=list)


class EscalationDetector:
    """Keyword and phrase based handoff detector."""

    def __init__(
        self,
        keywords: Dict[str, float],
        high_priority_keywords: Iterable[str] = (),
        threshold: float = 0.8
    ):
        self.keywords = {k.lower(): float(w) for k, w in keywords.items()}
        self.high_priority_keywords = [k.lower() for k in high_priority_keywords]
        self.threshold = threshold
        self._patterns = [re.compile(p) for p in EXPLICIT_REQUEST_PATTERNS]

    @classmethod
    def from_settings(cls, bot_settings: BotSettings) -> "EscalationDetector":
        return cls(
            keywords=bot_settings.escalation_keywords,
            high_priority_keywords=bot_settings.high_priority_keywords,
            threshold=bot_settings.escalation_threshold
        )

    @staticmethod
    def _find(text: str, phrases: Iterable[str]) -> List[str]:
        return [
            phrase for phrase in phrases
            if re.search(r'\b' + re.escape(phrase) + r'\b', text)
        ]

    def detect_keywords(self, text: str) -> Tuple[float, List[str]]:
        """
        Detect escalation keywords in text.

        Returns:
            Tuple of (strongest keyword weight, found_keywords)
        """
        found = self._find(text.lower(), self.keywords)
        score = max((self.keywords[k] for k in found), default=0.0)
        return min(score, 1.0), found

    def is_explicit_request(self, text: str) -> bool:
        lowered = text.lower()
        return any(pattern.search(lowered) for pattern in self._patterns)

    def priority_for(self, text: str) -> Priority:
        if self._find(text.lower(), self.high_priority_keywords):
            return Priority.HIGH
        return Priority.NORMAL

    def analyze(self, text: str) -> EscalationDecision:
        score, found = self.detect_keywords(text)
        explicit = self.is_explicit_request(text)
        confidence = 1.0 if explicit else score

        if confidence < self.threshold:
            return EscalationDecision(
                escalate=False,
                confidence=confidence,
                found_keywords=found
            )

        if found:
            reason = f"Customer asked for a human agent ({', '.join(found)})"
        else:
            reason = "Customer asked for a human agent"

        decision = EscalationDecision(
            escalate=True,
            confidence=confidence,
            priority=self.priority_for(text),
            reason=reason,
            found_keywords=found
        )
        logger.info(
            f"Escalation detected (confidence {confidence:.2f}, "
            f"priority {decision.priority.value})"
        )
        return decision


__all__ = ['EscalationDecision', 'EscalationDetector', 'EXPLICIT_REQUEST_PATTERNS']
