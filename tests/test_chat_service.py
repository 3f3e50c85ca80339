import json
import threading

import pytest

from chat_service import ChatService
from exceptions import StoreUnavailable, UserAlreadyExists, UserNotFound
from memory_backend import InMemoryBackend
from redis_keys import ACTIVE_USERS_CHANNEL, ACTIVE_USERS_KEY, CHAT_HISTORY_KEY, CHAT_MESSAGES_CHANNEL
from schemas.chat import Message
from state import ChatState


def test_join_post_leave_scenario(service):
    service.join("alice")
    assert service.list_users() == ["alice"]

    with pytest.raises(UserAlreadyExists):
        service.join("alice")
    assert service.list_users() == ["alice"]

    service.post_message("alice", "hi")
    assert service.list_messages()[-1] == Message(text="hi", author="alice")
    assert service.list_messages()[-1].to_wire() == {"message": "hi", "user": "alice"}

    service.leave("alice")
    assert service.list_users() == []
    last = service.list_messages()[-1]
    assert last.text == "alice just left the chat room"
    assert last.author == "system"


def test_join_publishes_system_message_then_user_list(service, store):
    service.join("alice")

    assert store.published == [
        (CHAT_MESSAGES_CHANNEL, json.dumps({"message": "alice just joined the chat room", "user": "system"})),
        (ACTIVE_USERS_CHANNEL, json.dumps(["alice"])),
    ]


def test_rejected_join_and_leave_publish_nothing(service, store):
    service.join("alice")
    store.published.clear()

    with pytest.raises(UserAlreadyExists):
        service.join("alice")
    with pytest.raises(UserNotFound):
        service.leave("bob")

    assert store.published == []
    assert len(service.list_messages()) == 1


def test_leave_removes_only_that_user(service, store):
    for user in ("alice", "bob", "carol"):
        service.join(user)

    service.leave("bob")

    assert service.list_users() == ["alice", "carol"]
    assert store.published[-1] == (ACTIVE_USERS_CHANNEL, json.dumps(["alice", "carol"]))


def test_notification_is_published_after_persist(store):
    seen_at_publish = []

    class CheckingStore(type(store)):
        def publish(self, channel, payload):
            if channel == CHAT_MESSAGES_CHANNEL:
                seen_at_publish.append(json.loads(self.get(CHAT_HISTORY_KEY))[-1])
            return super().publish(channel, payload)

    checking = CheckingStore()
    service = ChatService(ChatState(checking), checking)

    service.post_message("alice", "hi")

    assert seen_at_publish == [{"message": "hi", "user": "alice"}]


def test_posted_message_visible_to_fresh_cache(service, store):
    service.post_message("alice", "hi")

    assert ChatState(store).refresh_history() == [Message(text="hi", author="alice")]


def test_history_is_append_only(service):
    snapshots = []
    operations = [
        lambda: service.join("alice"),
        lambda: service.post_message("alice", "one"),
        lambda: service.join("bob"),
        lambda: service.post_message("bob", "two"),
        lambda: service.leave("alice"),
        lambda: service.post_message("bob", "three"),
    ]
    for operation in operations:
        operation()
        snapshots.append(service.list_messages())

    for earlier, later in zip(snapshots, snapshots[1:]):
        assert len(later) > len(earlier)
        assert later[:len(earlier)] == earlier


def test_concurrent_joins_keep_both_users(store):
    barrier = threading.Barrier(2)
    errors = []

    def join(user):
        service = ChatService(ChatState(store), store)
        barrier.wait()
        try:
            service.join(user)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=join, args=(user,)) for user in ("bob", "carol")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(json.loads(store.get(ACTIVE_USERS_KEY))) == ["bob", "carol"]
    assert len(json.loads(store.get(CHAT_HISTORY_KEY))) == 2


def test_concurrent_joins_of_same_user_admit_one(store):
    barrier = threading.Barrier(2)
    outcomes = []

    def join():
        service = ChatService(ChatState(store), store)
        barrier.wait()
        try:
            service.join("dave")
            outcomes.append("joined")
        except UserAlreadyExists:
            outcomes.append("conflict")

    threads = [threading.Thread(target=join) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["conflict", "joined"]
    assert json.loads(store.get(ACTIVE_USERS_KEY)) == ["dave"]


class FaultyStore(InMemoryBackend):
    """Records publishes; transactions or publishes can be switched off."""

    def __init__(self):
        super().__init__()
        self.published = []
        self.updates_down = False
        self.publish_down = False

    def update_many(self, keys, mutate):
        if self.updates_down:
            raise StoreUnavailable("update")
        return super().update_many(keys, mutate)

    def publish(self, channel, payload):
        if self.publish_down:
            raise StoreUnavailable(f"publish {channel}")
        self.published.append((channel, payload))
        return super().publish(channel, payload)


@pytest.fixture
def faulty_store():
    return FaultyStore()


@pytest.fixture
def faulty_service(faulty_store):
    return ChatService(ChatState(faulty_store), faulty_store)


def test_failed_join_leaves_nothing_behind_and_can_be_retried(faulty_service, faulty_store):
    faulty_store.updates_down = True
    with pytest.raises(StoreUnavailable):
        faulty_service.join("alice")

    assert faulty_store.get(ACTIVE_USERS_KEY) is None
    assert faulty_store.get(CHAT_HISTORY_KEY) is None
    assert faulty_store.published == []

    faulty_store.updates_down = False
    faulty_service.join("alice")

    assert json.loads(faulty_store.get(ACTIVE_USERS_KEY)) == ["alice"]
    assert json.loads(faulty_store.get(CHAT_HISTORY_KEY)) == [
        {"message": "alice just joined the chat room", "user": "system"},
    ]
    assert [channel for channel, _ in faulty_store.published] == [CHAT_MESSAGES_CHANNEL, ACTIVE_USERS_CHANNEL]


def test_failed_leave_keeps_user_and_history_consistent(faulty_service, faulty_store):
    faulty_service.join("alice")
    faulty_store.updates_down = True

    with pytest.raises(StoreUnavailable):
        faulty_service.leave("alice")

    assert json.loads(faulty_store.get(ACTIVE_USERS_KEY)) == ["alice"]
    assert len(json.loads(faulty_store.get(CHAT_HISTORY_KEY))) == 1

    faulty_store.updates_down = False
    faulty_service.leave("alice")
    assert json.loads(faulty_store.get(ACTIVE_USERS_KEY)) == []


def test_lost_notification_does_not_fail_committed_changes(faulty_service, faulty_store):
    faulty_store.publish_down = True

    faulty_service.join("alice")
    posted = faulty_service.post_message("alice", "hi")

    assert posted == Message(text="hi", author="alice")
    assert json.loads(faulty_store.get(ACTIVE_USERS_KEY)) == ["alice"]
    assert json.loads(faulty_store.get(CHAT_HISTORY_KEY)) == [
        {"message": "alice just joined the chat room", "user": "system"},
        {"message": "hi", "user": "alice"},
    ]
    assert faulty_store.published == []
