"""
Websocket endpoint for the realtime hub.

Clients connect with ``ws://host:port/?token=<jwt>``. The token is
optional; without a valid one the client only gets the CONNECTED ack.
"""

from typing import Optional
from urllib.parse import parse_qs, urlsplit

import structlog
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from arbflow.realtime.hub import RealtimeHub

logger = structlog.get_logger()


def extract_token(path: str) -> Optional[str]:
    """Pull the bearer token from the handshake query string."""
    values = parse_qs(urlsplit(path).query).get("token")
    if not values or not values[0]:
        return None
    return values[0]


class RealtimeServer:
    """Accepts websocket connections and hands them to the hub."""

    def __init__(self, hub: RealtimeHub, host: str = "0.0.0.0", port: int = 8765):
        self.hub = hub
        self.host = host
        self.port = port
        self.logger = logger.bind(component="realtime_server")
        self._server: Optional[Server] = None

    async def start(self) -> None:
        # Built-in keepalive off: the hub's sweep owns liveness
        self._server = await serve(
            self._handle,
            self.host,
            self.port,
            ping_interval=None,
        )
        self.logger.info("Websocket server listening", host=self.host, port=self.port)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        self.logger.info("Websocket server stopped")

    async def _handle(self, websocket: ServerConnection) -> None:
        token = extract_token(websocket.request.path) if websocket.request else None
        conn = await self.hub.connect(websocket, token)
        try:
            async for raw in websocket:
                try:
                    await self.hub.handle_message(conn, raw)
                except Exception as e:
                    self.logger.error("Message handler error", connection_id=conn.connection_id, error=str(e))
        except ConnectionClosed:
            pass
        finally:
            await self.hub.disconnect(conn)
