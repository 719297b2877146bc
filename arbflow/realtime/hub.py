"""
Real-time opportunity fan-out.

Keeps a registry of live websocket connections, answers client protocol
messages and pushes NEW_OPPORTUNITY notifications to every authenticated
connection.

Each connection owns a bounded outbox drained by a single writer task, so
a broadcast never awaits a slow socket and a dead socket only takes its
own connection down.

Wire protocol (JSON text frames):
    server -> client: CONNECTED, NEW_OPPORTUNITY, PONG, SUBSCRIBED, ERROR
    client -> server: PING, SUBSCRIBE
"""

import asyncio
import time
from typing import Any, Optional, Protocol, Union
from uuid import uuid4

import orjson
import structlog
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from arbflow.models.schemas import ArbitrageOpportunity, SubscribeRequest, Subscription
from arbflow.realtime.auth import InvalidTokenError, TokenVerifier

logger = structlog.get_logger()

WELCOME_MESSAGE = "Connected to arbitrage feed"


class ClientSocket(Protocol):
    """The slice of a websocket connection the hub needs."""

    async def send(self, message: str) -> None: ...

    async def ping(self) -> Any: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


class ClientConnection:
    """One websocket client as seen by the hub."""

    def __init__(self, socket: ClientSocket, user_id: Optional[str], outbox_size: int):
        self.connection_id = uuid4().hex
        self.socket = socket
        self.user_id = user_id
        self.is_alive = True
        self.subscriptions: list[Subscription] = []
        self.connected_at_ms = int(time.time() * 1000)

        # None is the writer's stop sentinel
        self.outbox: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=outbox_size)
        self.closed = False
        self._writer: Optional[asyncio.Task] = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    def mark_alive(self) -> None:
        self.is_alive = True


class RealtimeHub:
    """
    Authenticated publish/subscribe hub.

    Usage:
        hub = RealtimeHub(verifier)
        await hub.start()                         # liveness sweep
        conn = await hub.connect(socket, token)   # per websocket
        await hub.handle_message(conn, raw)
        await hub.notify_new_opportunity(opp)
        await hub.disconnect(conn)
        await hub.close()
    """

    def __init__(
        self,
        verifier: Optional[TokenVerifier],
        heartbeat_interval: float = 30.0,
        outbox_size: int = 256,
        auth_timeout: float = 5.0,
    ):
        self.verifier = verifier
        self.heartbeat_interval = heartbeat_interval
        self.outbox_size = outbox_size
        self.auth_timeout = auth_timeout
        self.logger = logger.bind(component="realtime_hub")

        # Registry: connection_id -> connection, user_id -> connection ids
        self._connections: dict[str, ClientConnection] = {}
        self._clients: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

        self._heartbeat_task: Optional[asyncio.Task] = None

        # Stats
        self._broadcasts = 0
        self._dropped_messages = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the liveness sweep."""
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
            self.logger.info("Realtime hub started", heartbeat_interval=self.heartbeat_interval)

    async def close(self) -> None:
        """Stop the sweep, flush outboxes and close every connection."""
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        for conn in await self._snapshot():
            try:
                await asyncio.wait_for(conn.outbox.join(), timeout=1.0)
            except asyncio.TimeoutError:
                pass
            await self.disconnect(conn, code=1001, reason="Server shutting down")

        self.logger.info("Realtime hub closed")

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def authenticate(self, token: Optional[str]) -> Optional[str]:
        """Resolve a bearer token to a user id, or None."""
        if not token or self.verifier is None:
            return None
        try:
            identity = await asyncio.wait_for(self.verifier.verify(token), timeout=self.auth_timeout)
        except InvalidTokenError as e:
            self.logger.info("Websocket auth rejected", error=str(e))
            return None
        except asyncio.TimeoutError:
            self.logger.warning("Websocket auth timed out")
            return None
        return identity.user_id

    async def connect(self, socket: ClientSocket, token: Optional[str] = None) -> ClientConnection:
        """Register a new socket. Bad or missing tokens give an unauthenticated connection."""
        user_id = await self.authenticate(token)
        conn = ClientConnection(socket, user_id, self.outbox_size)

        async with self._lock:
            self._connections[conn.connection_id] = conn
            if user_id is not None:
                self._clients.setdefault(user_id, set()).add(conn.connection_id)

        conn._writer = asyncio.create_task(self._writer(conn))

        self.logger.info(
            "Client connected",
            connection_id=conn.connection_id,
            user_id=user_id,
            authenticated=conn.authenticated,
        )
        self.send(conn, {
            "type": "CONNECTED",
            "message": WELCOME_MESSAGE,
            "authenticated": conn.authenticated,
        })
        return conn

    async def disconnect(self, conn: ClientConnection, code: int = 1000, reason: str = "") -> None:
        """Remove a connection and close its socket. Safe to call more than once."""
        removed = await self._unregister(conn)
        if not removed:
            return

        writer = conn._writer
        if writer is not None and not writer.done() and writer is not asyncio.current_task():
            try:
                conn.outbox.put_nowait(None)
            except asyncio.QueueFull:
                writer.cancel()

        try:
            await conn.socket.close(code=code, reason=reason)
        except Exception as e:
            self.logger.debug("Socket close failed", connection_id=conn.connection_id, error=str(e))

        self.logger.info("Client disconnected", connection_id=conn.connection_id, user_id=conn.user_id)

    async def _unregister(self, conn: ClientConnection) -> bool:
        async with self._lock:
            if self._connections.pop(conn.connection_id, None) is None:
                return False
            conn.closed = True
            if conn.user_id is not None:
                ids = self._clients.get(conn.user_id)
                if ids is not None:
                    ids.discard(conn.connection_id)
                    if not ids:
                        del self._clients[conn.user_id]
            return True

    async def _snapshot(self, authenticated_only: bool = False) -> list[ClientConnection]:
        async with self._lock:
            return [
                c for c in self._connections.values()
                if not authenticated_only or c.authenticated
            ]

    # =========================================================================
    # Outbound
    # =========================================================================

    def send(self, conn: ClientConnection, message: dict) -> bool:
        """Queue a message for one connection. False if closed or backed up."""
        if conn.closed:
            return False
        try:
            conn.outbox.put_nowait(orjson.dumps(message).decode())
            return True
        except asyncio.QueueFull:
            self._dropped_messages += 1
            self.logger.warning("Outbox full, dropping message", connection_id=conn.connection_id)
            return False

    async def _writer(self, conn: ClientConnection) -> None:
        """Drain one connection's outbox into its socket."""
        try:
            while True:
                message = await conn.outbox.get()
                try:
                    if message is None:
                        return
                    await conn.socket.send(message)
                finally:
                    conn.outbox.task_done()
        except asyncio.CancelledError:
            raise
        except (ConnectionClosed, OSError) as e:
            self.logger.info("Send failed, dropping client", connection_id=conn.connection_id, error=str(e))
        except Exception as e:
            self.logger.error("Writer error", connection_id=conn.connection_id, error=str(e))
        finally:
            # Release anyone waiting on join()
            while not conn.outbox.empty():
                conn.outbox.get_nowait()
                conn.outbox.task_done()

        await self.disconnect(conn)

    async def notify_new_opportunity(self, opportunity: ArbitrageOpportunity) -> int:
        """
        Push a newly stored opportunity to every authenticated connection.

        Subscription filters are not applied. Returns the number of
        connections the message was queued for.
        """
        message = {"type": "NEW_OPPORTUNITY", "data": opportunity.to_wire()}
        delivered = 0
        for conn in await self._snapshot(authenticated_only=True):
            if self.send(conn, message):
                delivered += 1
        self._broadcasts += 1
        self.logger.debug("Broadcast opportunity", opportunity_id=opportunity.id, recipients=delivered)
        return delivered

    # =========================================================================
    # Inbound
    # =========================================================================

    async def handle_message(self, conn: ClientConnection, raw: Union[str, bytes]) -> None:
        """Handle one client frame. Errors are reported to that client only."""
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            self.send(conn, {"type": "ERROR", "message": "Invalid JSON"})
            return

        if not isinstance(data, dict):
            self.send(conn, {"type": "ERROR", "message": "Message must be a JSON object"})
            return

        msg_type = data.get("type")
        if msg_type == "PING":
            conn.mark_alive()
            self.send(conn, {"type": "PONG"})
        elif msg_type == "SUBSCRIBE":
            self._handle_subscribe(conn, data)
        else:
            self.logger.debug("Unknown message type", connection_id=conn.connection_id, type=msg_type)
            self.send(conn, {"type": "ERROR", "message": f"Unknown message type: {msg_type}"})

    def _handle_subscribe(self, conn: ClientConnection, data: dict) -> None:
        if not conn.authenticated:
            self.send(conn, {"type": "ERROR", "message": "Authentication required"})
            return

        try:
            request = SubscribeRequest.model_validate(
                {"subscriptions": data.get("subscriptions") or []}
            )
        except ValidationError:
            self.send(conn, {"type": "ERROR", "message": "Invalid subscriptions"})
            return

        conn.subscriptions = request.subscriptions
        self.send(conn, {
            "type": "SUBSCRIBED",
            "subscriptions": [s.model_dump(exclude_none=True) for s in conn.subscriptions],
        })

    # =========================================================================
    # Liveness
    # =========================================================================

    async def sweep_liveness(self) -> int:
        """
        Close connections that missed the previous ping, ping the rest.

        Returns the number of connections terminated.
        """
        terminated = 0
        for conn in await self._snapshot():
            if not conn.is_alive:
                self.logger.info("Client missed heartbeat", connection_id=conn.connection_id)
                await self.disconnect(conn, code=1001, reason="Heartbeat timeout")
                terminated += 1
                continue

            conn.is_alive = False
            try:
                pong_waiter = await conn.socket.ping()
            except Exception as e:
                self.logger.debug("Ping failed", connection_id=conn.connection_id, error=str(e))
                continue
            if pong_waiter is not None:
                asyncio.ensure_future(pong_waiter).add_done_callback(
                    lambda fut, c=conn: self._on_pong(c, fut)
                )
        return terminated

    @staticmethod
    def _on_pong(conn: ClientConnection, fut: asyncio.Future) -> None:
        if not fut.cancelled() and fut.exception() is None:
            conn.mark_alive()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.sweep_liveness()
            except Exception as e:
                self.logger.error("Heartbeat sweep error", error=str(e))

    # =========================================================================
    # Introspection
    # =========================================================================

    def connection_count(self) -> int:
        return len(self._connections)

    def connections_for(self, user_id: str) -> list[ClientConnection]:
        return [self._connections[cid] for cid in self._clients.get(user_id, ())]

    def get_metrics(self) -> dict:
        return {
            "connections": len(self._connections),
            "authenticated_users": len(self._clients),
            "broadcasts": self._broadcasts,
            "dropped_messages": self._dropped_messages,
        }
