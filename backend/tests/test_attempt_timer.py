import asyncio
from datetime import timedelta

from portal.session.attempt_timer import AttemptTimer, elapsed_seconds, remaining_seconds


def test_remaining_seconds_from_start(clock):
    started_at = clock()

    assert remaining_seconds(1, started_at, started_at) == 60
    assert remaining_seconds(1, started_at, started_at + timedelta(seconds=59.9)) == 1
    assert remaining_seconds(1, started_at, started_at + timedelta(seconds=60)) == 0
    assert remaining_seconds(1, started_at, started_at + timedelta(hours=3)) == 0


def test_clock_before_start_never_grants_extra_time(clock):
    started_at = clock()

    assert elapsed_seconds(started_at, started_at - timedelta(seconds=30)) == 0
    assert remaining_seconds(1, started_at, started_at - timedelta(seconds=30)) == 60


def test_remaining_reflects_clock_jump(clock):
    fired = []

    async def on_expire():
        fired.append(True)

    timer = AttemptTimer(10, clock(), on_expire=on_expire, clock=clock)
    clock.advance(1)
    assert asyncio.run(timer.check()) == 599

    # process suspended for five minutes
    clock.advance(300)
    assert asyncio.run(timer.check()) == 299
    assert fired == []


def test_expiry_fires_exactly_once(clock):
    fired = []

    async def on_expire():
        fired.append(True)

    timer = AttemptTimer(1, clock(), on_expire=on_expire, clock=clock)
    clock.advance(61)

    async def scenario():
        return [await timer.check() for _ in range(3)]

    assert asyncio.run(scenario()) == [0, 0, 0]
    assert fired == [True]
    assert timer.fired


def test_stopped_timer_does_not_fire(clock):
    fired = []

    async def on_expire():
        fired.append(True)

    timer = AttemptTimer(1, clock(), on_expire=on_expire, clock=clock)
    timer.stop()
    clock.advance(120)

    assert asyncio.run(timer.check()) == 0
    assert fired == []


def test_run_loop_ticks_until_expiry(clock):
    fired = []

    async def on_expire():
        fired.append(True)

    timer = AttemptTimer(1, clock(), on_expire=on_expire, clock=clock, tick_seconds=0)

    async def scenario():
        task = timer.start()
        for _ in range(5):
            await asyncio.sleep(0)
        clock.advance(60)
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())
    assert fired == [True]
