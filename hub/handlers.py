"""aiohttp routes for the hub: the websocket stream and the health probe."""
from __future__ import annotations

import logging
import time

from aiohttp import WSMsgType, web

from hub.realtime_hub import RealtimeHub

logger = logging.getLogger(__name__)

HUB_KEY = web.AppKey('hub', RealtimeHub)
SCANNER_KEY = web.AppKey('scanner', object)


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    hub = request.app[HUB_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    if hub.closing:
        await ws.close()
        return ws

    connection = await hub.register(ws)
    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await hub.handle_frame(connection, msg.data)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("Client %s socket error: %s", connection.client_id, ws.exception())
    finally:
        await hub.unregister(connection)
    return ws


async def health_handler(request: web.Request) -> web.Response:
    hub = request.app[HUB_KEY]
    payload = {
        'status': 'online',
        'uptime': round(hub.uptime, 3),
        'connections': hub.connection_count,
        'timestamp': int(time.time() * 1000),
    }
    scanner = request.app.get(SCANNER_KEY)
    if scanner is not None:
        payload.update(scanner.status())
    return web.json_response(payload)


def setup_routes(app: web.Application) -> None:
    app.router.add_get('/', websocket_handler)
    app.router.add_get('/ws', websocket_handler)
    app.router.add_get('/api/health', health_handler)
