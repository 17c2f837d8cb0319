"""Per-user rate limiting for commands and expensive operations."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Mapping, Optional, Tuple, Union

from ..models.config import DEFAULT_COOLDOWN_SCOPE, CooldownRule, default_cooldowns

logger = logging.getLogger(__name__)

_Key = Tuple[str, int]


@dataclass(frozen=True)
class CooldownResult:
    allowed: bool
    retry_after: float = 0.0

    def __bool__(self) -> bool:
        return self.allowed

    def message(self) -> str:
        return (
            f"Please wait {self.retry_after:.1f} more seconds before using this command again."
        )


ALLOWED = CooldownResult(allowed=True)


class CooldownGate:
    """Tracks cooldown entries keyed by ``(scope, subject_id)``.

    Two disciplines are supported: single-slot (one use per window) and
    counting (up to ``max_uses`` per sliding window). Entries are removed by a
    timer on the running event loop once their window elapses, so idle users
    do not accumulate.
    """

    def __init__(
        self,
        rules: Optional[Mapping[str, CooldownRule]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._rules: Dict[str, CooldownRule] = dict(rules or default_cooldowns())
        self._clock = clock
        self._slots: Dict[_Key, float] = {}
        self._counters: Dict[_Key, Deque[float]] = {}
        self._timers: Dict[_Key, asyncio.TimerHandle] = {}

    def rule_for(self, scope: str) -> CooldownRule:
        return self._rules.get(scope) or self._rules.get(
            DEFAULT_COOLDOWN_SCOPE, CooldownRule(window_seconds=3)
        )

    def __len__(self) -> int:
        return len(self._slots) + len(self._counters)

    def try_acquire(
        self,
        scope: str,
        subject_id: Union[int, str],
        window_seconds: Optional[float] = None,
        max_uses: Optional[int] = None,
    ) -> CooldownResult:
        rule = self.rule_for(scope)
        window = window_seconds if window_seconds is not None else rule.window_seconds
        limit = max_uses if max_uses is not None else rule.max_uses
        key = (scope, subject_id)
        if limit > 1:
            return self._acquire_counting(key, window, limit)
        return self._acquire_slot(key, window)

    def _acquire_slot(self, key: _Key, window: float) -> CooldownResult:
        now = self._clock()
        expires_at = self._slots.get(key)
        if expires_at is not None and now < expires_at:
            return CooldownResult(allowed=False, retry_after=round(expires_at - now, 1))
        self._slots[key] = now + window
        self._schedule_cleanup(key, window, self._expire_slot)
        return ALLOWED

    def _acquire_counting(self, key: _Key, window: float, limit: int) -> CooldownResult:
        now = self._clock()
        uses = self._counters.setdefault(key, deque())
        while uses and uses[0] <= now:
            uses.popleft()
        if len(uses) >= limit:
            return CooldownResult(allowed=False, retry_after=round(uses[0] - now, 1))
        uses.append(now + window)
        self._schedule_cleanup(key, window, self._expire_counter)
        return ALLOWED

    def _schedule_cleanup(
        self, key: _Key, delay: float, callback: Callable[[_Key], None]
    ) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Outside an event loop the next acquisition replaces stale entries.
            return
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._timers[key] = loop.call_later(delay, callback, key)

    def _expire_slot(self, key: _Key) -> None:
        self._timers.pop(key, None)
        self._slots.pop(key, None)

    def _expire_counter(self, key: _Key) -> None:
        self._timers.pop(key, None)
        uses = self._counters.get(key)
        if not uses:
            self._counters.pop(key, None)
            return
        now = self._clock()
        while uses and uses[0] <= now:
            uses.popleft()
        if uses:
            self._schedule_cleanup(key, max(uses[-1] - now, 0.0), self._expire_counter)
        else:
            self._counters.pop(key, None)

    def reset(self, scope: str, subject_id: Union[int, str]) -> None:
        key = (scope, subject_id)
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._slots.pop(key, None)
        self._counters.pop(key, None)

    def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._slots.clear()
        self._counters.clear()
