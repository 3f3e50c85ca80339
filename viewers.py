import asyncio
import json
import uuid
from typing import Any, Dict

from fastapi import WebSocket

from logging_config import get_logger

logger = get_logger(__name__)


class ViewerRegistry:
    """Live viewers connected to this process.

    Each instance only tracks its own WebSocket connections; the store's
    pub/sub channels reach every instance and each one fans out locally.
    """

    def __init__(self):
        self.connections: Dict[str, WebSocket] = {}

    def __len__(self) -> int:
        return len(self.connections)

    def add(self, websocket: WebSocket) -> str:
        connection_id = str(uuid.uuid4())
        self.connections[connection_id] = websocket
        logger.debug(f"Added viewer {connection_id} (local viewers: {len(self.connections)})")
        return connection_id

    def remove(self, connection_id: str):
        if self.connections.pop(connection_id, None) is not None:
            logger.debug(f"Removed viewer {connection_id} (local viewers: {len(self.connections)})")

    async def broadcast(self, event: str, data: Any) -> int:
        """Send `{"event", "data"}` to every viewer; returns how many sends succeeded."""
        targets = list(self.connections.items())
        if not targets:
            return 0
        frame = json.dumps({"event": event, "data": data})
        results = await asyncio.gather(
            *(ws.send_text(frame) for _, ws in targets),
            return_exceptions=True,
        )
        delivered = 0
        for (connection_id, _), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(f"Error sending to viewer {connection_id}, dropping it: {result}")
                self.remove(connection_id)
            else:
                delivered += 1
        logger.debug(f"Broadcast {event} to {delivered}/{len(targets)} viewers")
        return delivered
