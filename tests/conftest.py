"""
Pytest configuration and shared fixtures.
Provides test settings, in-memory coordinator state and a scripted bot.
"""
import os

import pytest

# Set testing environment before importing the application
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["LOCK_BACKEND"] = "local"

from livesupport.config import BotSettings, Settings
from livesupport.coordinator import SupportCoordinator, SupportState
from livesupport.realtime.hub import ConnectionHub
from livesupport.services.bot_responder import BotReply, BotResponder
from livesupport.services.escalation import EscalationDetector
from livesupport.session import LocalLockManager


class ScriptedBot(BotResponder):
    """Answers with queued replies, echoing once they run out."""

    def __init__(self):
        self.replies = []
        self.calls = []

    async def respond(self, session, message):
        self.calls.append(message.content)
        if self.replies:
            return self.replies.pop(0)
        return BotReply(content=f"Echo: {message.content}")


# ===========================
# Settings Fixtures
# ===========================

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="testing",
        debug=True,
        database_url="sqlite:///:memory:",
        enable_telemetry=False,
        lock_backend="local",
        router_workers=2,
        outbox_max_size=100,
        max_sessions_per_agent=2,
        bot_greeting="Hello! How can I help you today?",
        maintenance_interval_seconds=3600
    )


@pytest.fixture
def test_bot_settings() -> BotSettings:
    return BotSettings(kb_enabled=False, max_unresolved_replies=3)


# ===========================
# Coordinator Fixtures
# ===========================

@pytest.fixture
def state() -> SupportState:
    return SupportState.in_memory()


@pytest.fixture
def hub() -> ConnectionHub:
    return ConnectionHub(outbox_size=100)


@pytest.fixture
def bot() -> ScriptedBot:
    return ScriptedBot()


@pytest.fixture
def coordinator(state, hub, test_settings, test_bot_settings, bot) -> SupportCoordinator:
    return SupportCoordinator(
        state=state,
        hub=hub,
        settings=test_settings,
        locks=LocalLockManager(),
        bot=bot,
        escalation=EscalationDetector.from_settings(test_bot_settings)
    )


@pytest.fixture
def start_customer(coordinator, hub):
    """Open a customer connection and start a chat; events are drained."""
    async def _start(name: str = "jane", metadata=None):
        connection = hub.register(f"{name}-conn")
        session = await coordinator.start_chat(
            connection.id, f"{name}@example.com", metadata=metadata
        )
        connection.drain()
        return connection, session
    return _start


@pytest.fixture
def join_agent(coordinator, hub):
    """Open an agent connection and join; events are drained."""
    async def _join(name: str):
        connection = hub.register(f"agent-{name}-conn")
        agent = await coordinator.agent_join(connection.id, name)
        connection.drain()
        return connection, agent
    return _join


@pytest.fixture
def waiting_session(coordinator, start_customer):
    """A session that has asked for a human agent."""
    async def _waiting(name: str = "jane", **kwargs):
        connection, session = await start_customer(name)
        await coordinator.request_agent(connection.id, session.id, **kwargs)
        connection.drain()
        return connection, session.id
    return _waiting


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
