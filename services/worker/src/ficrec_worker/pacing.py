"""抓取节奏控制。

外部站点有反爬防护，工作进程通过两层节奏控制降低被识别的概率：
1) RateBudget：按请求成本预留时间槽，保证平均请求间隔不低于 interval
2) JobPacer：抓取前随机停顿、任务间随机间隔，以及每隔若干任务一次长暂停
"""

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

from ficrec_worker.config import Settings


class RateBudget:
    """进程内抓取时间槽预留。"""

    def __init__(self, interval_seconds: float, clock: Callable[[], float] = time.monotonic):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._next_free_slot = 0.0
        self._lock = Lock()

    @property
    def next_free_slot(self) -> float:
        return self._next_free_slot

    def reserve(self, cost: int = 1) -> float:
        """预留 cost 个请求的时间窗口，返回窗口起点。"""
        if cost < 1:
            raise ValueError("cost must be at least 1")
        with self._lock:
            slot = max(self._clock(), self._next_free_slot)
            self._next_free_slot = slot + self.interval_seconds * cost
            return slot

    def reserve_window(self, count: int) -> list[float]:
        """一次预留 count 个连续请求，返回按 interval 间隔排列的各请求时间点。"""
        start = self.reserve(count)
        return [start + self.interval_seconds * index for index in range(count)]

    def seconds_until(self, slot: float) -> float:
        return max(0.0, slot - self._clock())


@dataclass(frozen=True)
class PauseDecision:
    """任务间停顿决策。"""

    seconds: float
    long_pause: bool = False


@dataclass(frozen=True)
class PacingProfile:
    think_time: tuple[float, float] = (0.5, 2.0)
    short_delay: tuple[float, float] = (12.0, 20.0)
    long_delay: tuple[float, float] = (20.0, 30.0)
    short_delay_probability: float = 0.75
    long_pause_every: tuple[int, int] = (10, 20)
    long_pause: tuple[float, float] = (60.0, 180.0)
    idle: tuple[float, float] = (4.0, 7.0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PacingProfile":
        return cls(
            think_time=(settings.think_time_min_seconds, settings.think_time_max_seconds),
            short_delay=(settings.short_delay_min_seconds, settings.short_delay_max_seconds),
            long_delay=(settings.long_delay_min_seconds, settings.long_delay_max_seconds),
            short_delay_probability=settings.short_delay_probability,
            long_pause_every=(settings.long_pause_every_min_jobs, settings.long_pause_every_max_jobs),
            long_pause=(settings.long_pause_min_seconds, settings.long_pause_max_seconds),
            idle=(settings.idle_min_seconds, settings.idle_max_seconds),
        )


class JobPacer:
    """随机节奏生成器，随机源可注入以便测试。"""

    def __init__(self, profile: PacingProfile | None = None, rng: random.Random | None = None):
        self.profile = profile or PacingProfile()
        self.rng = rng or random.Random()
        self._jobs_until_long_pause = self._draw_long_pause_countdown()

    def _draw_long_pause_countdown(self) -> int:
        low, high = self.profile.long_pause_every
        return self.rng.randint(low, high)

    def think_time(self) -> float:
        return self.rng.uniform(*self.profile.think_time)

    def idle_wait(self) -> float:
        return self.rng.uniform(*self.profile.idle)

    def after_job(self) -> PauseDecision:
        """每完成一个任务调用一次。"""
        self._jobs_until_long_pause -= 1
        if self._jobs_until_long_pause <= 0:
            self._jobs_until_long_pause = self._draw_long_pause_countdown()
            return PauseDecision(seconds=self.rng.uniform(*self.profile.long_pause), long_pause=True)
        if self.rng.random() < self.profile.short_delay_probability:
            return PauseDecision(seconds=self.rng.uniform(*self.profile.short_delay))
        return PauseDecision(seconds=self.rng.uniform(*self.profile.long_delay))
