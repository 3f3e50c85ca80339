import json
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from exceptions import StoreUnavailable
from logging_config import get_logger
from redis_keys import ACTIVE_USERS_KEY, CHAT_HISTORY_KEY
from schemas.chat import Message

logger = get_logger(__name__)


def dump_history(history: List[Message]) -> str:
    return json.dumps([message.to_wire() for message in history])


def load_history(raw: str) -> List[Message]:
    try:
        return [Message.model_validate(item) for item in json.loads(raw)]
    except (json.JSONDecodeError, TypeError, ValidationError) as e:
        raise StoreUnavailable(f"decode {CHAT_HISTORY_KEY}", e) from e


def dump_users(users: List[str]) -> str:
    return json.dumps(users)


def load_users(raw: str) -> List[str]:
    try:
        users = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StoreUnavailable(f"decode {ACTIVE_USERS_KEY}", e) from e
    if not isinstance(users, list) or not all(isinstance(u, str) for u in users):
        raise StoreUnavailable(f"decode {ACTIVE_USERS_KEY}", TypeError("expected a list of strings"))
    return users


class ChatState:
    """Process-wide working copy of the chat history and active users.

    The store holds the authoritative values. `refresh_*` pulls them in,
    `persist_*` overwrites them with the working copy, and `update_*` runs a
    read-modify-write atomically against the store and adopts the result.
    A refresh that finds the key absent, or that fails, leaves the working
    copy as it was.
    """

    def __init__(self, store):
        self.store = store
        self.history: List[Message] = []
        self.active_users: List[str] = []

    def load(self):
        self.refresh_history()
        self.refresh_users()
        logger.info(f"Loaded chat state: {len(self.history)} messages, {len(self.active_users)} active users")

    def refresh_history(self) -> List[Message]:
        raw = self.store.get(CHAT_HISTORY_KEY)
        if raw is not None:
            self.history = load_history(raw)
        return list(self.history)

    def refresh_users(self) -> List[str]:
        raw = self.store.get(ACTIVE_USERS_KEY)
        if raw is not None:
            self.active_users = load_users(raw)
        return list(self.active_users)

    def persist_history(self):
        # Unconditional overwrite: a concurrent writer's update is lost
        self.store.set(CHAT_HISTORY_KEY, dump_history(self.history))

    def persist_users(self):
        self.store.set(ACTIVE_USERS_KEY, dump_users(self.active_users))

    def update_history(self, mutate: Callable[[List[Message]], List[Message]]) -> List[Message]:
        def apply(raw: Optional[str]) -> str:
            current = load_history(raw) if raw is not None else []
            return dump_history(mutate(current))

        self.history = load_history(self.store.update(CHAT_HISTORY_KEY, apply))
        return list(self.history)

    def update_users(self, mutate: Callable[[List[str]], List[str]]) -> List[str]:
        def apply(raw: Optional[str]) -> str:
            current = load_users(raw) if raw is not None else []
            return dump_users(mutate(current))

        self.active_users = load_users(self.store.update(ACTIVE_USERS_KEY, apply))
        return list(self.active_users)

    def update_room(self, mutate: Callable[[List[Message], List[str]], Tuple[List[Message], List[str]]]
                    ) -> Tuple[List[Message], List[str]]:
        """Rewrite history and active users in one store transaction."""
        def apply(values: Dict[str, Optional[str]]) -> Dict[str, str]:
            raw_history, raw_users = values[CHAT_HISTORY_KEY], values[ACTIVE_USERS_KEY]
            history, users = mutate(
                load_history(raw_history) if raw_history is not None else [],
                load_users(raw_users) if raw_users is not None else [],
            )
            return {CHAT_HISTORY_KEY: dump_history(history), ACTIVE_USERS_KEY: dump_users(users)}

        committed = self.store.update_many([CHAT_HISTORY_KEY, ACTIVE_USERS_KEY], apply)
        self.history = load_history(committed[CHAT_HISTORY_KEY])
        self.active_users = load_users(committed[ACTIVE_USERS_KEY])
        return list(self.history), list(self.active_users)
