import asyncio
import json
from decimal import Decimal

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from analysis.models import ArbitrageOpportunity, ArbitrageStep, LogEntry, LogLevel, RouteDetails
from hub.handlers import HUB_KEY, SCANNER_KEY, setup_routes
from hub.realtime_hub import RealtimeHub


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.closed = False
        self.fail = fail

    async def send_str(self, payload):
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append(json.loads(payload))

    async def close(self):
        self.closed = True

    def types(self):
        return [message['type'] for message in self.sent]


class PongingSocket(FakeSocket):
    """Answers every ping like a healthy browser client."""

    def __init__(self, hub):
        super().__init__()
        self.hub = hub
        self.connection = None

    async def send_str(self, payload):
        await super().send_str(payload)
        if self.sent[-1]['type'] == 'ping' and self.connection is not None:
            asyncio.get_running_loop().call_soon(
                asyncio.ensure_future, self.hub.handle_frame(self.connection, '{"type": "pong"}')
            )


def _entry(message, level=LogLevel.INFO):
    return LogEntry.now(level, message)


def _opportunity():
    return ArbitrageOpportunity(
        route='USDC -> WMATIC -> USDC',
        steps=(
            ArbitrageStep('USDC', 'WMATIC', 'QuickSwap', Decimal('1.2')),
            ArbitrageStep('WMATIC', 'USDC', 'SushiSwap', Decimal('1.01')),
        ),
        profit=Decimal('0.01'),
        profit_percentage=Decimal(1),
        flash_loan_amount=Decimal(1),
        total_value_moved=Decimal('2.01'),
    )


@pytest.mark.asyncio
async def test_log_ring_never_exceeds_capacity_and_evicts_oldest():
    hub = RealtimeHub(log_capacity=3)

    for index in range(5):
        await hub.publish_log(_entry(f"log {index}"))

    assert len(hub.logs) == 3
    assert [entry.message for entry in hub.recent_logs()] == ['log 4', 'log 3', 'log 2']


@pytest.mark.asyncio
async def test_new_connection_receives_buffered_logs_newest_first():
    hub = RealtimeHub(ping_interval=60)
    await hub.publish_log(_entry('first'))
    await hub.publish_log(_entry('second', LogLevel.SUCCESS))
    socket = FakeSocket()

    connection = await hub.register(socket)

    assert socket.sent[0]['type'] == 'initial'
    assert [item['message'] for item in socket.sent[0]['data']] == ['second', 'first']
    assert socket.sent[0]['data'][0]['type'] == 'success'
    assert hub.connection_count == 1
    await hub.unregister(connection)
    assert hub.connection_count == 0


@pytest.mark.asyncio
async def test_broadcast_skips_pending_connections_and_isolates_failures():
    hub = RealtimeHub(ping_interval=60)
    healthy, pending, broken = FakeSocket(), FakeSocket(), FakeSocket()
    await hub.register(healthy)
    pending_connection = await hub.register(pending)
    await hub.register(broken)
    pending_connection.is_pending = True
    broken.fail = True

    delivered = await hub.publish_log(
        LogEntry.now(LogLevel.SUCCESS, 'profit', RouteDetails('USDC -> WMATIC -> USDC', Decimal('0.5'), 'A', 'B'))
    )

    assert delivered == 1
    assert healthy.types() == ['initial', 'log']
    assert healthy.sent[1]['data']['details'] == {'route': 'USDC -> WMATIC -> USDC', 'profit': 0.5, 'dex1': 'A', 'dex2': 'B'}
    assert pending.types() == ['initial']
    assert broken.closed
    assert hub.connection_count == 2
    await hub.close()


@pytest.mark.asyncio
async def test_silent_client_is_terminated_after_pong_timeout():
    hub = RealtimeHub(ping_interval=0.01, pong_timeout=0.02)
    socket = FakeSocket()
    connection = await hub.register(socket)

    await asyncio.sleep(0.2)

    assert 'ping' in socket.types()
    assert socket.closed
    assert connection.client_id not in hub.connections
    assert await hub.publish_log(_entry('after')) == 0
    assert socket.types().count('log') == 0


@pytest.mark.asyncio
async def test_client_answering_pings_stays_connected():
    hub = RealtimeHub(ping_interval=0.01, pong_timeout=0.05)
    socket = PongingSocket(hub)
    socket.connection = await hub.register(socket)

    await asyncio.sleep(0.15)

    assert socket.types().count('ping') >= 2
    assert not socket.closed
    assert hub.connection_count == 1
    await hub.close()
    assert socket.closed
    assert hub.connection_count == 0


@pytest.mark.asyncio
async def test_inbound_ping_is_answered_and_malformed_frames_ignored():
    hub = RealtimeHub(ping_interval=60)
    socket = FakeSocket()
    connection = await hub.register(socket)
    connection.is_alive = False

    await hub.handle_frame(connection, 'not json')
    assert connection.is_alive
    assert socket.types() == ['initial']

    await hub.handle_frame(connection, '{"type": "ping"}')
    assert socket.types() == ['initial', 'pong']
    await hub.close()


@pytest.mark.asyncio
async def test_opportunity_messages_carry_payload():
    hub = RealtimeHub(ping_interval=60)
    socket = FakeSocket()
    await hub.register(socket)

    await hub.publish_opportunities([_opportunity()])
    await hub.publish_opportunity(_opportunity())
    assert await hub.publish_opportunities([]) == 0

    batch, single = socket.sent[1], socket.sent[2]
    assert batch['type'] == 'opportunities'
    assert batch['data'][0]['route'] == 'USDC -> WMATIC -> USDC'
    assert 'timestamp' in batch
    assert single['type'] == 'opportunity'
    assert single['data']['profitPercentage'] == 1.0
    await hub.close()


def _app(hub, scanner=None):
    app = web.Application()
    app[HUB_KEY] = hub
    if scanner is not None:
        app[SCANNER_KEY] = scanner
    setup_routes(app)
    return app


class StubScanner:
    def status(self):
        return {'last_scan_time': '2024-01-01 00:00:00', 'found_last_scan': 2, 'last_error': None}


@pytest.mark.asyncio
async def test_health_endpoint_reports_uptime_connections_and_scan_status():
    hub = RealtimeHub(ping_interval=60)
    async with TestClient(TestServer(_app(hub, StubScanner()))) as client:
        response = await client.get('/api/health')
        payload = await response.json()

    assert response.status == 200
    assert payload['status'] == 'online'
    assert payload['connections'] == 0
    assert payload['uptime'] >= 0
    assert payload['found_last_scan'] == 2
    assert 'timestamp' in payload


@pytest.mark.asyncio
async def test_websocket_endpoint_streams_initial_logs_and_broadcasts():
    hub = RealtimeHub(ping_interval=60)
    await hub.publish_log(_entry('buffered'))

    async with TestClient(TestServer(_app(hub))) as client:
        ws = await client.ws_connect('/ws')
        initial = await ws.receive_json(timeout=1)
        assert initial['type'] == 'initial'
        assert initial['data'][0]['message'] == 'buffered'

        await ws.send_str('{"type": "ping"}')
        assert (await ws.receive_json(timeout=1))['type'] == 'pong'

        await hub.publish_log(_entry('live'))
        live = await ws.receive_json(timeout=1)
        assert live['type'] == 'log'
        assert live['data']['message'] == 'live'

        await ws.close()
        await hub.close()
