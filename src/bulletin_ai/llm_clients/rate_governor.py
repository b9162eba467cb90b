"""Per-model request pacing with adaptive delays.

The governor is the only component that mutates throttle state.  Delays grow
on throttling errors (doubling, or the provider's own retry hint) and shrink
by 10% after every streak of three successes, never below 30% of the base
delay.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from bulletin_ai.llm_clients.config import FullConfig
from bulletin_ai.llm_clients.delay_store import (
    MIN_DELAY_MS,
    DelayPersistence,
    DelayStore,
    JsonFileDelayPersistence,
    ThrottleState,
)
from bulletin_ai.llm_clients.failure_classifier import extract_retry_after
from bulletin_ai.utils.errors import RequestCancelledError
from bulletin_ai.utils.real_time_logger import get_logger

LOGGER = get_logger()

SUCCESS_THRESHOLD = 3
SUCCESS_REDUCTION_FACTOR = 0.9
ERROR_INCREASE_FACTOR = 2.0
FLOOR_RATIO = 0.3
GENERATION_ESTIMATE_MS = 2000

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]
WaitCallback = Callable[[int], None]
T = TypeVar("T")


async def race_cancel(awaitable: Awaitable[T], cancel: Optional[asyncio.Event], message: str = "request cancelled") -> T:
    """Await `awaitable` unless `cancel` fires first, in which case it is cancelled.

    Raises :class:`RequestCancelledError` on the token; native task
    cancellation also cancels the inner awaitable and propagates.
    """

    if cancel is None:
        return await awaitable
    task = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        watcher.cancel()
    if cancel.is_set():
        task.cancel()
        raise RequestCancelledError(message)
    return task.result()


@dataclass
class GovernorStats:
    model_id: str
    current_delay_ms: int
    base_delay_ms: int
    success_streak: int
    is_adapted: bool

    @property
    def adaptation_ratio(self) -> str:
        return f"{self.current_delay_ms / self.base_delay_ms * 100:.0f}%"


@dataclass
class TimeEstimate:
    total_ms: int
    total_minutes: float
    per_item_ms: int
    delay_ms: int


class RateGovernor:
    """Adaptive inter-request delay per ModelId."""

    def __init__(
        self,
        base_delay_for: Callable[[str], int],
        persistence: Optional[DelayPersistence] = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._store = DelayStore(base_delay_for, persistence)
        self._clock = clock
        self._sleep = sleep
        self._store.load()

    @classmethod
    def from_config(cls, config: FullConfig, **kwargs) -> "RateGovernor":
        persistence: Optional[DelayPersistence] = None
        if config.persistence.path:
            persistence = JsonFileDelayPersistence(config.persistence.path, key=config.persistence.key)
        return cls(config.rate_limits.base_delay_for, persistence, **kwargs)

    # --- timing -----------------------------------------------------------------
    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    @staticmethod
    def _remaining(state: ThrottleState, now_ms: float) -> int:
        if state.last_request_at is None:
            return 0
        return max(0, math.ceil(state.current_delay_ms - (now_ms - state.last_request_at)))

    def wait_time(self, model_id: str) -> int:
        state = self._store.peek(model_id)
        if state is None:
            return 0
        return self._remaining(state, self._now_ms())

    async def await_ready(
        self,
        model_id: str,
        on_wait: Optional[WaitCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> int:
        """Suspend until ``model_id`` may be called again; returns the ms waited.

        The start slot is reserved before sleeping so callers queue in issue
        order, and a cancelled wait keeps its reservation.
        """

        if cancel is not None and cancel.is_set():
            raise RequestCancelledError(f"wait for {model_id} cancelled")

        state = self._store.get(model_id)
        now = self._now_ms()
        wait_ms = self._remaining(state, now)
        state.last_request_at = now + wait_ms

        if wait_ms > 0:
            if on_wait is not None:
                on_wait(wait_ms)
            LOGGER.debug("[governor] %s waiting %dms", model_id, wait_ms)
            await self._interruptible_sleep(wait_ms / 1000.0, cancel)

        state.last_request_at = max(state.last_request_at, self._now_ms())
        return wait_ms

    async def _interruptible_sleep(self, seconds: float, cancel: Optional[asyncio.Event]) -> None:
        await race_cancel(self._sleep(seconds), cancel, "wait cancelled")

    # --- adaptive controls ------------------------------------------------------
    def mark_success(self, model_id: str) -> None:
        state = self._store.get(model_id)
        state.success_streak += 1
        if state.success_streak < SUCCESS_THRESHOLD:
            return
        state.success_streak = 0

        current = state.current_delay_ms
        floor = max(MIN_DELAY_MS, math.ceil(state.base_delay_ms * FLOOR_RATIO))
        new_delay = max(floor, round(current * SUCCESS_REDUCTION_FACTOR))
        if new_delay < current:
            self._store.set_delay(model_id, new_delay)
            self._store.save()
            LOGGER.info("[governor] reduced delay for %s: %dms -> %dms", model_id, current, new_delay)

    def mark_throttled(self, model_id: str, raw_error_text: Optional[str] = None) -> int:
        state = self._store.get(model_id)
        state.success_streak = 0

        current = state.current_delay_ms
        hint = extract_retry_after(raw_error_text)
        if hint is not None and hint > current:
            target = min(state.max_delay_ms, hint)
        else:
            target = min(state.max_delay_ms, round(current * ERROR_INCREASE_FACTOR))
        new_delay = self._store.set_delay(model_id, target)
        self._store.save()
        LOGGER.warning(
            "[governor] throttled on %s: delay %dms -> %dms%s",
            model_id,
            current,
            new_delay,
            f" (provider hint {hint}ms)" if hint is not None else "",
        )
        return new_delay

    def reset_adaptive(self, model_id: Optional[str] = None) -> None:
        self._store.clear(model_id)
        self._store.save()
        LOGGER.info("[governor] adaptive delays reset for %s", model_id or "all models")

    # --- read-only views --------------------------------------------------------
    def current_delay(self, model_id: str) -> int:
        return self._store.get(model_id).current_delay_ms

    def base_delay(self, model_id: str) -> int:
        return self._store.base_delay(model_id)

    def success_streak(self, model_id: str) -> int:
        state = self._store.peek(model_id)
        return state.success_streak if state else 0

    def stats(self, model_id: str) -> GovernorStats:
        state = self._store.get(model_id)
        return GovernorStats(
            model_id=model_id,
            current_delay_ms=state.current_delay_ms,
            base_delay_ms=state.base_delay_ms,
            success_streak=state.success_streak,
            is_adapted=state.is_adapted,
        )

    def all_stats(self) -> List[GovernorStats]:
        return [self.stats(model_id) for model_id in sorted(self._store)]

    def snapshot(self) -> Dict[str, int]:
        return self._store.to_mapping()

    def estimate_time(self, count: int, model_id: str) -> TimeEstimate:
        delay = self.current_delay(model_id)
        per_item = delay + GENERATION_ESTIMATE_MS
        total = count * per_item
        return TimeEstimate(
            total_ms=total,
            total_minutes=math.ceil(total / 60000 * 10) / 10,
            per_item_ms=per_item,
            delay_ms=delay,
        )

    @staticmethod
    def format_wait(ms: int) -> str:
        total_seconds = math.ceil(ms / 1000)
        minutes, seconds = divmod(total_seconds, 60)
        if minutes > 0:
            return f"{minutes} min {seconds} sec" if seconds else f"{minutes} min"
        return f"{seconds} sec"


__all__ = [
    "SUCCESS_THRESHOLD",
    "SUCCESS_REDUCTION_FACTOR",
    "ERROR_INCREASE_FACTOR",
    "RateGovernor",
    "GovernorStats",
    "TimeEstimate",
    "race_cancel",
]
