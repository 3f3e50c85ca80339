"""Shared fixtures: an in-memory store that records publishes, and the core objects built on it."""
import pytest

from chat_service import ChatService
from memory_backend import InMemoryBackend
from state import ChatState


class RecordingStore(InMemoryBackend):
    def __init__(self):
        super().__init__()
        self.published = []

    def publish(self, channel, payload):
        self.published.append((channel, payload))
        return super().publish(channel, payload)


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def state(store):
    return ChatState(store)


@pytest.fixture
def service(state, store):
    return ChatService(state, store)
