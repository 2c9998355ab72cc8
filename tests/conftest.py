"""
Shared fixtures for the chat engine tests
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from config.app_config import BackendConfig, ChatConfig, UIConfig
from infrastructure.monitoring.logging_service import ErrorTracker
from infrastructure.storage.storage_service import MemoryStorageService
from services.backend_service.mock_backend import MockChatBackend
from services.backend_service.models import BackendResult, SendMessageResponse
from services.chat_service.conversation_store import ConversationStore
from services.chat_service.helpers import create_message
from services.chat_service.models import MessageRole
from services.chat_service.send_pipeline import SendPipeline


class MockSessionState:
    """Mock Streamlit session state for testing"""

    def __init__(self):
        self.data = {}

    def __contains__(self, key):
        return key in self.data

    def __getitem__(self, key):
        return self.data[key]

    def __setitem__(self, key, value):
        self.data[key] = value

    def __delitem__(self, key):
        del self.data[key]

    def keys(self):
        return self.data.keys()

    def get(self, key, default=None):
        return self.data.get(key, default)


class SteppingClock:
    """Clock that advances one second on every reading"""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


class GatedBackend(MockChatBackend):
    """
    Mock backend whose replies wait until the test releases them.
    Each send gets its own gate, in call order.
    """

    def __init__(self):
        super().__init__(BackendConfig(mock_latency_seconds=0, mock_reply_latency_seconds=0), conversations=[])
        self.gates = []
        self.requests = []
        self.fail_with = None

    async def send_message(self, request):
        gate = asyncio.Event()
        self.gates.append(gate)
        self.requests.append(request)
        await gate.wait()
        if self.fail_with is not None:
            return BackendResult.fail(self.fail_with)
        reply = create_message(f"reply to {request.message}", MessageRole.ASSISTANT)
        return BackendResult.ok(SendMessageResponse(message=reply, conversation_id=request.conversation_id))


@pytest.fixture
def chat_config():
    return ChatConfig()


@pytest.fixture
def ui_config():
    return UIConfig()


@pytest.fixture
def storage():
    return MemoryStorageService(namespace="test")


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def error_tracker():
    return ErrorTracker(logging.getLogger("tests.errors"))


@pytest.fixture
def backend():
    """Instant mock backend without seeded conversations"""
    return MockChatBackend(BackendConfig(mock_latency_seconds=0, mock_reply_latency_seconds=0), conversations=[])


@pytest.fixture
def gated_backend():
    return GatedBackend()


@pytest.fixture
def store(storage, backend, chat_config, clock, error_tracker):
    return ConversationStore(storage, backend, chat_config, clock=clock, error_tracker=error_tracker)


@pytest.fixture
def pipeline(store, error_tracker):
    return SendPipeline(store, error_tracker=error_tracker)
