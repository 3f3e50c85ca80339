import redis
from redis.exceptions import RedisError, WatchError
from typing import Callable, Dict, Iterable, Optional, Tuple
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB, REDIS_SOCKET_TIMEOUT, REDIS_URL, STORE_MAX_RETRIES
from exceptions import ConcurrentUpdate, StoreUnavailable
from logging_config import get_logger

logger = get_logger(__name__)

Mutator = Callable[[Optional[str]], str]
MultiMutator = Callable[[Dict[str, Optional[str]]], Dict[str, str]]


def create_redis_client() -> redis.Redis:
    if REDIS_URL:
        return redis.Redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_timeout=REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=REDIS_SOCKET_TIMEOUT,
        )
    return redis.Redis(
        host=REDIS_HOST,
        port=REDIS_PORT,
        password=REDIS_PASSWORD,
        db=REDIS_DB,
        decode_responses=True,
        socket_timeout=REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=REDIS_SOCKET_TIMEOUT,
    )


class RedisSubscription:
    """Channel subscription on a dedicated pub/sub connection."""

    def __init__(self, pubsub):
        self.pubsub = pubsub

    def get_message(self, timeout: float = 1.0) -> Optional[Tuple[str, str]]:
        """Block up to `timeout` seconds for the next published payload."""
        try:
            message = self.pubsub.get_message(timeout=timeout, ignore_subscribe_messages=True)
        except RedisError as e:
            raise StoreUnavailable("get_message", e) from e
        if message is None or message.get("type") != "message":
            return None
        return message["channel"], message["data"]

    def close(self):
        try:
            self.pubsub.close()
        except RedisError as e:
            logger.warning(f"Error closing pub/sub connection: {e}")


class RedisBackend:
    def __init__(self, redis_client: Optional[redis.Redis] = None, pubsub_client: Optional[redis.Redis] = None,
                 max_retries: int = STORE_MAX_RETRIES):
        self.redis_client = redis_client or create_redis_client()
        # Separate connection for pub/sub (required by Redis)
        self.pubsub_client = pubsub_client or create_redis_client()
        self.max_retries = max_retries
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")

    def ping(self):
        try:
            self.redis_client.ping()
            self.pubsub_client.ping()
        except RedisError as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            raise StoreUnavailable("ping", e) from e
        logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")

    def get(self, key: str) -> Optional[str]:
        try:
            value = self.redis_client.get(key)
        except RedisError as e:
            logger.error(f"Redis GET {key} failed: {e}")
            raise StoreUnavailable(f"get {key}", e) from e
        logger.debug(f"GET {key}: {'hit' if value is not None else 'miss'}")
        return value

    def set(self, key: str, value: str):
        try:
            self.redis_client.set(key, value)
        except RedisError as e:
            logger.error(f"Redis SET {key} failed: {e}")
            raise StoreUnavailable(f"set {key}", e) from e
        logger.debug(f"SET {key} ({len(value)} bytes)")

    def update(self, key: str, mutate: Mutator) -> str:
        """Atomically replace the value under `key` with `mutate(current)`."""
        return self.update_many([key], lambda values: {key: mutate(values[key])})[key]

    def update_many(self, keys: Iterable[str], mutate: MultiMutator) -> Dict[str, str]:
        """Atomically rewrite several keys from their current values.

        Uses WATCH/MULTI/EXEC over all keys; if another client writes any of
        them between our reads and our EXEC the transaction is retried against
        the new values. Either every returned key is written or none is.
        Exceptions raised by `mutate` abort the update without writing.
        """
        keys = list(keys)
        label = ", ".join(keys)
        for attempt in range(1, self.max_retries + 1):
            try:
                with self.redis_client.pipeline() as pipe:
                    pipe.watch(*keys)
                    current = {key: pipe.get(key) for key in keys}
                    new_values = mutate(current)
                    pipe.multi()
                    for key, value in new_values.items():
                        pipe.set(key, value)
                    pipe.execute()
                logger.debug(f"Updated {label} on attempt {attempt}")
                return new_values
            except WatchError:
                logger.info(f"Concurrent write to {label}, retrying (attempt {attempt}/{self.max_retries})")
            except RedisError as e:
                logger.error(f"Redis transaction on {label} failed: {e}")
                raise StoreUnavailable(f"update {label}", e) from e
        logger.warning(f"Giving up on {label} after {self.max_retries} conflicting attempts")
        raise ConcurrentUpdate(label, self.max_retries)

    def publish(self, channel: str, payload: str) -> int:
        try:
            subscribers = self.redis_client.publish(channel, payload)
        except RedisError as e:
            logger.error(f"Redis PUBLISH to {channel} failed: {e}")
            raise StoreUnavailable(f"publish {channel}", e) from e
        logger.debug(f"Published to channel {channel}, {subscribers} subscribers")
        return subscribers

    def subscribe(self, channels: Iterable[str]) -> RedisSubscription:
        channels = list(channels)
        logger.debug(f"Subscribing to Redis channels {channels}")
        pubsub = self.pubsub_client.pubsub()
        try:
            pubsub.subscribe(*channels)
        except RedisError as e:
            pubsub.close()
            raise StoreUnavailable("subscribe", e) from e
        logger.info(f"Subscribed to channels {channels}")
        return RedisSubscription(pubsub)

    def close(self):
        self.redis_client.close()
        self.pubsub_client.close()
