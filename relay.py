import asyncio
import json
from typing import Optional

from constants import RELAY_POLL_TIMEOUT, RELAY_RETRY_DELAY
from exceptions import StoreUnavailable
from logging_config import get_logger
from redis_keys import VIEWER_EVENTS
from viewers import ViewerRegistry

logger = get_logger(__name__)


class BroadcastRelay:
    """Forwards every payload published on the chat channels to live viewers.

    Subscribes once at startup, then dispatches each received payload
    unmodified under the viewer event mapped to its channel. There is no
    replay: viewers connected after a publish never see that payload.
    """

    def __init__(self, store, viewers: ViewerRegistry, poll_timeout: float = RELAY_POLL_TIMEOUT,
                 retry_delay: float = RELAY_RETRY_DELAY):
        self.store = store
        self.viewers = viewers
        self.poll_timeout = poll_timeout
        self.retry_delay = retry_delay
        self.subscription = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._stopping = False
        # Subscribe before returning so nothing published after startup is missed
        self.subscription = self.store.subscribe(VIEWER_EVENTS.keys())
        self._task = asyncio.create_task(self._listen(), name="chat-broadcast-relay")
        logger.info("Broadcast relay started")

    async def stop(self):
        self._stopping = True
        if self._task is not None:
            # Let the in-flight poll return before closing the subscription;
            # the pub/sub connection must not be used from two threads.
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=self.poll_timeout + 1.0)
            except asyncio.TimeoutError:
                logger.warning("Broadcast relay did not stop in time, cancelling it")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
        if self.subscription is not None:
            self.subscription.close()
        self._task = None
        self.subscription = None
        logger.info("Broadcast relay stopped")

    async def dispatch(self, channel: str, payload: str) -> int:
        event = VIEWER_EVENTS.get(channel)
        if event is None:
            logger.warning(f"Ignoring payload on unexpected channel {channel}")
            return 0
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"Dropping undecodable payload on {channel}: {e}")
            return 0
        return await self.viewers.broadcast(event, data)

    async def _listen(self):
        loop = asyncio.get_running_loop()
        while not self._stopping:
            try:
                if self.subscription is None:
                    self.subscription = self.store.subscribe(VIEWER_EVENTS.keys())
                # Blocking poll runs in the thread pool
                received = await loop.run_in_executor(None, self.subscription.get_message, self.poll_timeout)
            except StoreUnavailable as e:
                logger.error(f"Relay lost its subscription, retrying in {self.retry_delay}s: {e}")
                if self.subscription is not None:
                    self.subscription.close()
                    self.subscription = None
                await asyncio.sleep(self.retry_delay)
                continue
            if received is None:
                continue
            channel, payload = received
            try:
                await self.dispatch(channel, payload)
            except Exception as e:
                logger.error(f"Error dispatching payload from {channel}: {e}", exc_info=True)
