import random

import pytest

from ficrec_worker.config import Settings
from ficrec_worker.pacing import JobPacer, PacingProfile, RateBudget


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_reserve_spaces_requests_by_interval():
    clock = FakeClock()
    budget = RateBudget(6.0, clock=clock)

    slots = [budget.reserve() for _ in range(3)]

    assert slots == [100.0, 106.0, 112.0]
    assert budget.next_free_slot == 118.0


def test_reserve_never_schedules_in_the_past():
    clock = FakeClock()
    budget = RateBudget(6.0, clock=clock)
    budget.reserve()

    clock.now = 500.0
    assert budget.reserve() == 500.0
    assert budget.seconds_until(499.0) == 0.0
    assert budget.seconds_until(503.5) == 3.5


def test_reserve_cost_blocks_whole_window():
    budget = RateBudget(6.0, clock=FakeClock(0.0))

    assert budget.reserve(cost=4) == 0.0
    assert budget.reserve() == 24.0


def test_reserve_window_returns_evenly_spaced_slots():
    budget = RateBudget(5.0, clock=FakeClock(10.0))
    budget.reserve()

    assert budget.reserve_window(3) == [15.0, 20.0, 25.0]
    assert budget.next_free_slot == 30.0


def test_invalid_budget_arguments_are_rejected():
    with pytest.raises(ValueError):
        RateBudget(0)
    with pytest.raises(ValueError):
        RateBudget(6.0).reserve(cost=0)


def test_think_and_idle_waits_stay_in_range():
    pacer = JobPacer(rng=random.Random(1))

    for _ in range(200):
        assert 0.5 <= pacer.think_time() <= 2.0
        assert 4.0 <= pacer.idle_wait() <= 7.0


def test_job_delays_mix_short_and_long_ranges():
    profile = PacingProfile(long_pause_every=(10_000, 10_000))
    pacer = JobPacer(profile, rng=random.Random(3))

    decisions = [pacer.after_job() for _ in range(400)]

    assert not any(decision.long_pause for decision in decisions)
    short = [d for d in decisions if d.seconds < 20.0]
    assert all(12.0 <= d.seconds <= 30.0 for d in decisions)
    # 短间隔概率为 0.75，400 次抽样的占比应明显落在区间内。
    assert 0.6 < len(short) / len(decisions) < 0.9


def test_long_pause_arrives_every_ten_to_twenty_jobs():
    pacer = JobPacer(rng=random.Random(11))

    positions = [index for index in range(1, 201) if pacer.after_job().long_pause]

    assert positions
    gaps = [positions[0]] + [b - a for a, b in zip(positions, positions[1:])]
    assert all(10 <= gap <= 20 for gap in gaps)


def test_long_pause_duration_range():
    pacer = JobPacer(PacingProfile(long_pause_every=(1, 1)), rng=random.Random(5))

    for _ in range(20):
        decision = pacer.after_job()
        assert decision.long_pause
        assert 60.0 <= decision.seconds <= 180.0


def test_profile_from_settings():
    settings = Settings(think_time_min_seconds=1, think_time_max_seconds=1, long_pause_every_min_jobs=3, long_pause_every_max_jobs=4)

    profile = PacingProfile.from_settings(settings)

    assert profile.think_time == (1, 1)
    assert profile.long_pause_every == (3, 4)
    assert profile.short_delay_probability == 0.75


def test_settings_reject_inverted_ranges():
    with pytest.raises(ValueError):
        Settings(idle_min_seconds=9, idle_max_seconds=2)
