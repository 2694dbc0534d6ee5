import asyncio

import pytest

from energy_sync.scheduler import ExpiryScheduler


def test_tick_fires_in_deadline_order(clock):
    sched = ExpiryScheduler(clock=clock)
    fired = []
    sched.schedule("late", 60, fired.append)
    sched.schedule("early", 30, fired.append)
    sched.schedule("mid", 45, fired.append)

    assert sched.next_deadline() == clock.now + 30
    clock.advance(50)
    assert sched.tick() == ["early", "mid"]
    assert fired == ["early", "mid"]
    assert len(sched) == 1

    clock.advance(10)
    assert sched.tick() == ["late"]
    assert len(sched) == 0
    assert sched.next_deadline() is None


def test_cancel_and_reschedule(clock):
    sched = ExpiryScheduler(clock=clock)
    fired = []
    sched.schedule("a", 10, fired.append)
    sched.schedule("b", 10, fired.append)
    assert sched.cancel("a")
    assert not sched.cancel("a")
    sched.schedule("b", 100, fired.append)
    clock.advance(20)
    assert sched.tick() == []
    assert "b" in sched
    assert sched.deadline("b") == clock.now - 20 + 100


def test_cancel_all_drops_everything(clock):
    sched = ExpiryScheduler(clock=clock)
    fired = []
    for key in range(5):
        sched.schedule(key, key, fired.append)
    sched.cancel_all()
    clock.advance(100)
    assert sched.tick() == []
    assert fired == []


def test_closed_scheduler_rejects_new_work(clock):
    sched = ExpiryScheduler(clock=clock)
    sched.close()
    with pytest.raises(RuntimeError):
        sched.schedule("a", 1, lambda k: None)


@pytest.mark.asyncio
async def test_single_loop_timer_drives_expiry():
    sched = ExpiryScheduler()
    fired = []
    sched.schedule("a", 0.01, fired.append)
    sched.schedule("b", 0.02, fired.append)
    sched.schedule("c", 5, fired.append)
    await asyncio.sleep(0.1)
    assert fired == ["a", "b"]
    sched.cancel_all()
    assert sched._timer is None
