import pytest

from services.rate_limiter import QuoteThrottle


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_cooldown_grows_monotonically_and_is_capped():
    clock = FakeClock()
    throttle = QuoteThrottle(base_cooldown=2.0, max_cooldown=60.0, clock=clock)

    cooldowns = [throttle.register_rate_limit() for _ in range(8)]

    assert cooldowns[:5] == [4.0, 8.0, 16.0, 32.0, 60.0]
    assert all(later >= earlier for earlier, later in zip(cooldowns, cooldowns[1:]))
    assert max(cooldowns) == 60.0
    assert throttle.in_cooldown


def test_success_resets_cooldown():
    clock = FakeClock()
    throttle = QuoteThrottle(clock=clock)
    throttle.register_rate_limit()
    throttle.register_rate_limit()

    throttle.register_success()

    assert throttle.consecutive_errors == 0
    assert throttle.current_cooldown == 0.0
    assert not throttle.in_cooldown
    assert throttle.register_rate_limit() == 4.0


@pytest.mark.asyncio
async def test_wait_turn_enforces_min_interval():
    clock = FakeClock()
    throttle = QuoteThrottle(min_interval=1.0, clock=clock, sleep=clock.sleep)

    await throttle.wait_turn()
    clock.now += 0.25
    await throttle.wait_turn()

    assert clock.sleeps == [pytest.approx(0.75)]


@pytest.mark.asyncio
async def test_wait_turn_sleeps_out_cooldown_first():
    clock = FakeClock()
    throttle = QuoteThrottle(min_interval=1.0, base_cooldown=2.0, clock=clock, sleep=clock.sleep)

    await throttle.wait_turn()
    throttle.register_rate_limit()
    await throttle.wait_turn()

    assert clock.sleeps == [4.0]
    assert throttle.get_stats()['consecutive_errors'] == 1
