"""Realtime distribution hub: connection registry, heartbeat, log ring and broadcast."""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from analysis.models import ArbitrageOpportunity, ExecutionSignal, LogEntry
from constants import DEFAULT_LOG_CAPACITY, DEFAULT_PING_INTERVAL, DEFAULT_PONG_TIMEOUT
from hub.messages import (
    MessageType,
    initial_message,
    log_message,
    opportunities_message,
    opportunity_message,
    parse_message,
    ping_message,
    pong_message,
)

logger = logging.getLogger(__name__)

SEND_ERRORS = (ConnectionError, RuntimeError)


@dataclass(eq=False)
class ClientConnection:
    """Hub-side state of one observer. ``socket`` needs ``send_str``, ``close`` and ``closed``."""
    socket: Any
    client_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    is_alive: bool = True
    is_pending: bool = False
    last_heartbeat: float = field(default_factory=time.monotonic)
    heartbeat_task: Optional[asyncio.Task] = None
    pong_event: asyncio.Event = field(default_factory=asyncio.Event)

    def note_traffic(self) -> None:
        self.is_alive = True
        self.is_pending = False
        self.last_heartbeat = time.monotonic()
        self.pong_event.set()


class RealtimeHub:
    def __init__(
        self,
        *,
        log_capacity: int = DEFAULT_LOG_CAPACITY,
        ping_interval: float = DEFAULT_PING_INTERVAL,
        pong_timeout: float = DEFAULT_PONG_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        # Newest entry first; appending past maxlen drops the oldest from the right.
        self.logs: Deque[LogEntry] = deque(maxlen=log_capacity)
        self.connections: Dict[str, ClientConnection] = {}
        self.ping_interval = ping_interval
        self.pong_timeout = pong_timeout
        self._clock = clock
        self.started_at = clock()
        self.closing = False

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    @property
    def uptime(self) -> float:
        return self._clock() - self.started_at

    def recent_logs(self) -> List[LogEntry]:
        return list(self.logs)

    async def register(self, socket: Any) -> ClientConnection:
        connection = ClientConnection(socket=socket)
        self.connections[connection.client_id] = connection
        logger.info("Client %s connected (%d total, %d logs buffered)",
                    connection.client_id, self.connection_count, len(self.logs))

        if await self._send(connection, initial_message(self.logs)):
            connection.heartbeat_task = asyncio.create_task(self._heartbeat(connection))
        return connection

    async def unregister(self, connection: ClientConnection) -> None:
        if self.connections.pop(connection.client_id, None) is not None:
            logger.info("Client %s disconnected (%d remaining)", connection.client_id, self.connection_count)
        self._cancel_heartbeat(connection)

    async def handle_frame(self, connection: ClientConnection, raw: str) -> None:
        """Any inbound frame counts as liveness; pings are answered with pong."""
        connection.note_traffic()
        kind = parse_message(raw)
        if kind is None:
            logger.warning("Ignoring malformed frame from client %s: %.200s", connection.client_id, raw)
            return
        if kind is MessageType.PING:
            await self._send(connection, pong_message())

    async def publish_log(self, entry: LogEntry) -> int:
        self.logs.appendleft(entry)
        return await self.broadcast(log_message(entry))

    async def publish_opportunity(
        self, opportunity: ArbitrageOpportunity, signal: Optional[ExecutionSignal] = None
    ) -> int:
        return await self.broadcast(opportunity_message(opportunity, signal))

    async def publish_opportunities(self, opportunities: Iterable[ArbitrageOpportunity]) -> int:
        batch = list(opportunities)
        if not batch:
            return 0
        return await self.broadcast(opportunities_message(batch))

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Sends to every open, non-pending connection; failing clients are terminated."""
        payload = json.dumps(message)
        targets = [
            connection
            for connection in self.connections.values()
            if not connection.is_pending and not connection.socket.closed
        ]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(connection.socket.send_str(payload) for connection in targets), return_exceptions=True
        )
        delivered = 0
        for connection, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("Broadcast to client %s failed: %s", connection.client_id, result)
                await self.terminate(connection)
            else:
                delivered += 1
        logger.debug("%s sent to %d client(s)", message.get('type'), delivered)
        return delivered

    async def terminate(self, connection: ClientConnection) -> None:
        self.connections.pop(connection.client_id, None)
        self._cancel_heartbeat(connection)
        try:
            await connection.socket.close()
        except SEND_ERRORS as exc:
            logger.debug("Error closing client %s: %s", connection.client_id, exc)

    async def close(self) -> None:
        """Stops every heartbeat and closes every socket."""
        self.closing = True
        connections = list(self.connections.values())
        for connection in connections:
            await self.terminate(connection)
        logger.info("Hub closed %d connection(s)", len(connections))

    async def _heartbeat(self, connection: ClientConnection) -> None:
        while connection.client_id in self.connections:
            await asyncio.sleep(self.ping_interval)

            if not connection.is_alive:
                logger.info("Client %s inactive, terminating", connection.client_id)
                await self.terminate(connection)
                return

            connection.is_alive = False
            connection.is_pending = True
            connection.pong_event.clear()
            if not await self._send(connection, ping_message()):
                return

            try:
                await asyncio.wait_for(connection.pong_event.wait(), timeout=self.pong_timeout)
            except asyncio.TimeoutError:
                logger.info("Client %s did not answer ping within %.1fs, terminating",
                            connection.client_id, self.pong_timeout)
                await self.terminate(connection)
                return

    async def _send(self, connection: ClientConnection, message: Dict[str, Any]) -> bool:
        try:
            await connection.socket.send_str(json.dumps(message))
        except SEND_ERRORS as exc:
            logger.warning("Send to client %s failed: %s", connection.client_id, exc)
            await self.terminate(connection)
            return False
        return True

    @staticmethod
    def _cancel_heartbeat(connection: ClientConnection) -> None:
        task = connection.heartbeat_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
