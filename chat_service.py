import json
from typing import List

from constants import SYSTEM_USER
from exceptions import StoreUnavailable, UserAlreadyExists, UserNotFound
from logging_config import get_logger
from redis_keys import ACTIVE_USERS_CHANNEL, CHAT_MESSAGES_CHANNEL
from schemas.chat import Message
from state import ChatState

logger = get_logger(__name__)


class ChatService:
    """Join, leave, post and list operations for the chat room.

    Every mutation follows the same order: refresh the cache, apply the
    change atomically against the store, publish the notification, then
    refresh again. Join and leave commit the user list and their system
    message in a single transaction. Notifications are only published once
    the store has acknowledged the write they describe. Live viewers are
    reached solely through the store's pub/sub channels.
    """

    def __init__(self, state: ChatState, store):
        self.state = state
        self.store = store

    def list_messages(self) -> List[Message]:
        return self.state.refresh_history()

    def list_users(self) -> List[str]:
        return self.state.refresh_users()

    def join(self, user: str):
        self.state.refresh_users()
        message = Message(text=f"{user} just joined the chat room", author=SYSTEM_USER)

        def add_user(history: List[Message], users: List[str]):
            if user in users:
                raise UserAlreadyExists(user)
            return history + [message], users + [user]

        try:
            _, users = self.state.update_room(add_user)
        except UserAlreadyExists:
            logger.warning(f"Join rejected: user {user} is already in the chat room")
            raise
        self._notify_message(message)
        self._notify_users(users)
        logger.info(f"User {user} joined the chat room ({len(users)} active)")
        self._resync()

    def leave(self, user: str):
        self.state.refresh_users()
        message = Message(text=f"{user} just left the chat room", author=SYSTEM_USER)

        def remove_user(history: List[Message], users: List[str]):
            if user not in users:
                raise UserNotFound(user)
            return history + [message], [u for u in users if u != user]

        try:
            _, users = self.state.update_room(remove_user)
        except UserNotFound:
            logger.warning(f"Leave rejected: user {user} is not in the chat room")
            raise
        self._notify_message(message)
        self._notify_users(users)
        logger.info(f"User {user} left the chat room ({len(users)} active)")
        self._resync()

    def post_message(self, user: str, text: str) -> Message:
        self.state.refresh_history()
        message = Message(text=text, author=user)
        self.state.update_history(lambda history: history + [message])
        self._notify_message(message)
        logger.debug(f"Message from {user} stored and published")
        self._resync()
        return message

    def _notify_message(self, message: Message):
        self._publish(CHAT_MESSAGES_CHANNEL, json.dumps(message.to_wire()))

    def _notify_users(self, users: List[str]):
        self._publish(ACTIVE_USERS_CHANNEL, json.dumps(users))

    def _publish(self, channel: str, payload: str):
        # The change is already committed, so a lost notification does not fail
        # the request; viewers catch up through the list operations.
        try:
            self.store.publish(channel, payload)
        except StoreUnavailable as e:
            logger.error(f"Change committed but notification on {channel} failed: {e}")

    def _resync(self):
        # The mutation is already committed; a failed follow-up refresh only
        # leaves the cache at the committed snapshot.
        try:
            self.state.refresh_history()
            self.state.refresh_users()
        except StoreUnavailable as e:
            logger.warning(f"Post-update refresh failed, keeping committed snapshot: {e}")
