"""
Tests for escalation detection.
"""
import pytest

from livesupport.config import BotSettings
from livesupport.models import Priority
from livesupport.services.escalation import EscalationDetector


@pytest.fixture
def detector():
    return EscalationDetector.from_settings(BotSettings())


@pytest.mark.unit
@pytest.mark.parametrize("text", [
    "I would like to speak with a human agent please.",
    "Can I talk to a representative?",
    "Is there a real person there?",
    "HUMAN",
    "transfer me to someone who can help",
])
def test_requests_for_a_person_escalate(detector, text):
    decision = detector.analyze(text)
    assert decision.escalate
    assert decision.confidence >= detector.threshold
    assert decision.reason


@pytest.mark.unit
@pytest.mark.parametrize("text", [
    "How do I reset my password?",
    "What are your opening hours?",
    "Humanity has come a long way",
])
def test_ordinary_questions_do_not_escalate(detector, text):
    decision = detector.analyze(text)
    assert not decision.escalate
    assert decision.reason is None


@pytest.mark.unit
def test_urgent_requests_get_high_priority(detector):
    decision = detector.analyze("This is urgent, I need a human now")
    assert decision.escalate
    assert decision.priority == Priority.HIGH


@pytest.mark.unit
def test_plain_requests_get_normal_priority(detector):
    assert detector.analyze("let me talk to a person").priority == Priority.NORMAL


@pytest.mark.unit
def test_detect_keywords_reports_strongest_weight(detector):
    score, found = detector.detect_keywords("my manager wants a human")
    assert score == 1.0
    assert set(found) == {"manager", "human"}


@pytest.mark.unit
def test_weights_below_threshold_do_not_escalate():
    detector = EscalationDetector({"manager": 0.5}, threshold=0.8)

    decision = detector.analyze("my manager asked me to check")

    assert not decision.escalate
    assert decision.confidence == 0.5
    assert decision.found_keywords == ["manager"]


@pytest.mark.unit
def test_keywords_from_environment_string():
    settings = BotSettings(escalation_keywords="agent=0.9, callback", high_priority_keywords="fraud, outage")

    assert settings.escalation_keywords == {"agent": 0.9, "callback": 1.0}
    assert settings.high_priority_keywords == ["fraud", "outage"]

    detector = EscalationDetector.from_settings(settings)
    decision = detector.analyze("possible fraud, please arrange a callback")
    assert decision.escalate
    assert decision.priority == Priority.HIGH
