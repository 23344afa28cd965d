import asyncio

from expofinder.scraper.ratelimit import MinIntervalLimiter


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay


def test_first_call_does_not_wait():
    clock = FakeClock()
    limiter = MinIntervalLimiter(2.0, clock=clock, sleep=clock.sleep)

    async def run():
        async with limiter:
            pass

    asyncio.run(run())
    assert clock.sleeps == []


def test_waits_out_remaining_interval_after_previous_call():
    clock = FakeClock()
    limiter = MinIntervalLimiter(2.0, clock=clock, sleep=clock.sleep)

    async def run():
        async with limiter:
            clock.now += 5.0        # the call itself takes a while
        clock.now += 0.5
        async with limiter:
            pass
        async with limiter:
            pass

    asyncio.run(run())
    assert clock.sleeps == [1.5, 2.0]


def test_no_wait_once_interval_has_passed():
    clock = FakeClock()
    limiter = MinIntervalLimiter(2.0, clock=clock, sleep=clock.sleep)

    async def run():
        async with limiter:
            pass
        clock.now += 3.0
        async with limiter:
            pass

    asyncio.run(run())
    assert clock.sleeps == []


def test_zero_interval_and_reset():
    clock = FakeClock()
    limiter = MinIntervalLimiter(0, clock=clock, sleep=clock.sleep)

    async def run():
        for _ in range(3):
            async with limiter:
                pass

    asyncio.run(run())
    assert clock.sleeps == []

    paced = MinIntervalLimiter(2.0, clock=clock, sleep=clock.sleep)
    paced.mark()
    paced.reset()
    asyncio.run(paced.wait())
    assert clock.sleeps == []
