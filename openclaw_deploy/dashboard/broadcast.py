"""
One-to-many relay of subprocess output to WebSocket clients.
"""

import logging

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

GREETING = "Connected to Deployment Log Stream...\n"


class LogBroadcaster:
    """Keeps the set of connected log viewers and fans messages out to them."""

    def __init__(self):
        self.clients: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.clients.add(websocket)
        logger.debug("Log viewer connected (%d total)", len(self.clients))
        await websocket.send_text(GREETING)

    def disconnect(self, websocket: WebSocket) -> None:
        self.clients.discard(websocket)
        logger.debug("Log viewer disconnected (%d left)", len(self.clients))

    async def publish(self, message: str) -> None:
        """Send a message to every client; clients that fail are dropped."""
        for websocket in list(self.clients):
            try:
                await websocket.send_text(message)
            except (WebSocketDisconnect, RuntimeError, ConnectionError):
                self.disconnect(websocket)
