import asyncio
from decimal import Decimal

import aiohttp
import pytest

from analysis.models import TokenInfo
from services.paraswap_client import ParaSwapClient
from services.rate_limiter import QuoteThrottle

USDC = TokenInfo('USDC', '0x2791bca1f2de4661ed88a30c99a7a9449aa84174', 6)
WMATIC = TokenInfo('WMATIC', '0x0d500b1d8e8ef31e21c99d1db9a6444d3adf1270', 18)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds


class FakeResponse:
    def __init__(self, status, payload):
        self.status = status
        self._payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def raise_for_status(self):
        if self.status >= 400:
            raise aiohttp.ClientError(f"HTTP {self.status}")

    async def json(self, content_type='application/json'):
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    def get(self, url, params, timeout):
        self.calls.append((url, params))
        if not self._responses:
            raise AssertionError("No more fake responses configured")
        status, payload = self._responses.pop(0)
        return FakeResponse(status, payload)


def _route(dest_amount, exchange='QuickSwap', gas_cost='0.01'):
    return {
        'priceRoute': {
            'destAmount': str(dest_amount),
            'gasCostUSD': gas_cost,
            'bestRoute': [{'percent': 100, 'swaps': [{'swapExchanges': [{'exchange': exchange}]}]}],
        }
    }


def _client(responses, clock, **kwargs):
    throttle = QuoteThrottle(min_interval=1.0, base_cooldown=2.0, max_cooldown=60.0, clock=clock, sleep=clock.sleep)
    session = FakeSession(responses)
    return ParaSwapClient(session, throttle, cache_ttl=30, clock=clock, **kwargs), session, throttle


@pytest.mark.asyncio
async def test_quote_parses_price_route_and_sends_smallest_units():
    clock = FakeClock()
    client, session, _ = _client([(200, _route(2 * 10 ** 18, exchange='SushiSwap'))], clock)

    result = await client.quote(USDC, WMATIC, Decimal('1.5'))

    assert result.amount == Decimal(2)
    assert result.dex == 'SushiSwap'
    assert result.gas_cost_usd == Decimal('0.01')
    url, params = session.calls[0]
    assert url.endswith('/prices')
    assert params['amount'] == '1500000'
    assert params['srcToken'] == USDC.address
    assert params['destToken'] == WMATIC.address
    assert params['network'] == '137'
    assert params['side'] == 'SELL'


@pytest.mark.asyncio
async def test_cached_quote_is_returned_without_new_request_until_expiry():
    clock = FakeClock()
    client, session, _ = _client([(200, _route(10 ** 18)), (200, _route(3 * 10 ** 18))], clock)

    first = await client.quote(USDC, WMATIC, Decimal(1))
    clock.now += 10
    second = await client.quote(USDC, WMATIC, Decimal(1))

    assert second is first
    assert len(session.calls) == 1
    assert client.cache_stats()['hits'] == 1

    clock.now += 30
    third = await client.quote(USDC, WMATIC, Decimal(1))

    assert len(session.calls) == 2
    assert third.amount == Decimal(3)


@pytest.mark.asyncio
async def test_quote_filled_while_waiting_for_slot_counts_as_hit():
    clock = FakeClock()
    client, session, throttle = _client([(200, _route(10 ** 18))], clock)

    async with throttle.slot:
        first = asyncio.create_task(client.quote(USDC, WMATIC, Decimal(1)))
        second = asyncio.create_task(client.quote(USDC, WMATIC, Decimal(1)))
        await asyncio.sleep(0)
    results = await asyncio.gather(first, second)

    assert results[0] is results[1]
    assert len(session.calls) == 1
    stats = client.cache_stats()
    assert (stats['hits'], stats['misses']) == (1, 1)
    assert stats['hit_rate'] == 0.5


@pytest.mark.asyncio
async def test_three_rate_limits_exhaust_retries_and_return_none():
    clock = FakeClock()
    client, session, throttle = _client([(429, {}), (429, {}), (429, {})], clock, max_retries=3)

    result = await client.quote(USDC, WMATIC, Decimal(1))

    assert result is None
    assert len(session.calls) == 3
    assert throttle.consecutive_errors == 3


@pytest.mark.asyncio
async def test_rate_limit_then_success_resets_cooldown():
    clock = FakeClock()
    client, session, throttle = _client([(429, {}), (200, _route(10 ** 18))], clock)
    start = clock.now

    result = await client.quote(USDC, WMATIC, Decimal(1))

    assert result.amount == Decimal(1)
    assert len(session.calls) == 2
    # the retry waited out the 4s cooldown (2 * 2**1)
    assert clock.now - start >= 4.0
    assert throttle.consecutive_errors == 0
    assert throttle.current_cooldown == 0.0


@pytest.mark.asyncio
async def test_max_impact_is_none_and_not_cached():
    clock = FakeClock()
    payload = _route(10 ** 18)
    payload['priceRoute']['maxImpactReached'] = True
    client, session, _ = _client([(200, payload), (200, _route(10 ** 18))], clock)

    assert await client.quote(USDC, WMATIC, Decimal(1)) is None
    assert await client.quote(USDC, WMATIC, Decimal(1)) is not None
    assert len(session.calls) == 2


@pytest.mark.asyncio
async def test_no_route_error_body_returns_none_without_retry():
    clock = FakeClock()
    client, session, _ = _client([(400, {'error': 'No routes found with enough liquidity'})], clock)

    assert await client.quote(USDC, WMATIC, Decimal(1)) is None
    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_server_error_returns_none_without_retry():
    clock = FakeClock()
    client, session, throttle = _client([(500, {})], clock)

    assert await client.quote(USDC, WMATIC, Decimal(1)) is None
    assert len(session.calls) == 1
    assert throttle.consecutive_errors == 0


@pytest.mark.asyncio
async def test_non_positive_amount_skips_request():
    clock = FakeClock()
    client, session, _ = _client([], clock)

    assert await client.quote(USDC, WMATIC, Decimal(0)) is None
    assert session.calls == []


def test_exchange_name_falls_back_to_unknown():
    assert ParaSwapClient._best_exchange({'bestRoute': []}) == 'Unknown'
    assert ParaSwapClient._best_exchange({'bestRoute': [{'exchange': 'Curve'}]}) == 'Curve'
