"""
Fixed-window rate limiting with escalating blocks.

``evaluate`` is a pure step function: given the stored state for a key,
the rule and the current time, it returns the next state and the verdict.
Every store implementation persists the state differently but delegates
the decision here, so all backends behave identically.
"""

import math
from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class RateLimitRule:
    """
    Limits for one action.

    Attributes:
        max_attempts: Attempts allowed per window
        window_ms: Window length in milliseconds
        block_duration_ms: Block length once exceeded (default: 2x window)
        escalation_factor: Multiplier applied per consecutive block (1.0 = none)
    """

    max_attempts: int
    window_ms: int
    block_duration_ms: Optional[int] = None
    escalation_factor: float = 1.0

    def block_ms(self, strikes: int) -> int:
        base = (
            self.block_duration_ms
            if self.block_duration_ms is not None
            else self.window_ms * 2
        )
        return int(base * (self.escalation_factor**strikes))


@dataclass(frozen=True)
class WindowState:
    """Persisted counter state for one key."""

    count: int
    window_start_ms: int
    blocked_until_ms: Optional[int] = None
    strikes: int = 0


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate-limit check."""

    allowed: bool
    remaining: int
    retry_after_ms: Optional[int] = None
    blocked_until_ms: Optional[int] = None

    @property
    def retry_after_seconds(self) -> Optional[int]:
        if self.retry_after_ms is None:
            return None
        return math.ceil(self.retry_after_ms / 1000)


def _strikes_after_block(state: WindowState, rule: RateLimitRule, now_ms: int) -> int:
    # A full quiet window after the block ends clears the escalation.
    if state.blocked_until_ms is not None and now_ms - state.blocked_until_ms <= rule.window_ms:
        return state.strikes
    return 0


def evaluate(
    state: Optional[WindowState],
    rule: RateLimitRule,
    now_ms: int,
) -> tuple[WindowState, RateLimitResult]:
    """
    Apply one attempt to the stored state.

    1. An active block (blocked_until > now) rejects without counting.
    2. No state, an expired block, or an elapsed window
       (now - window_start > window, strictly) starts a fresh window
       with count 1 and allows.
    3. Otherwise the count is incremented; exceeding max_attempts sets a
       block of ``rule.block_ms(strikes)`` and rejects.

    Args:
        state: Current state for the key, or None if never seen
        rule: Limits to apply
        now_ms: Current time in epoch milliseconds

    Returns:
        Tuple of (new state to persist, result)
    """
    if state is not None and state.blocked_until_ms is not None:
        if state.blocked_until_ms > now_ms:
            return state, RateLimitResult(
                allowed=False,
                remaining=0,
                retry_after_ms=state.blocked_until_ms - now_ms,
                blocked_until_ms=state.blocked_until_ms,
            )

    if (
        state is None
        or state.blocked_until_ms is not None
        or now_ms - state.window_start_ms > rule.window_ms
    ):
        strikes = 0 if state is None else _strikes_after_block(state, rule, now_ms)
        fresh = WindowState(count=1, window_start_ms=now_ms, strikes=strikes)
        return fresh, RateLimitResult(
            allowed=True, remaining=max(rule.max_attempts - 1, 0)
        )

    count = state.count + 1
    if count > rule.max_attempts:
        block = rule.block_ms(state.strikes)
        blocked_until = now_ms + block
        blocked = replace(
            state,
            count=count,
            blocked_until_ms=blocked_until,
            strikes=state.strikes + 1,
        )
        return blocked, RateLimitResult(
            allowed=False,
            remaining=0,
            retry_after_ms=block,
            blocked_until_ms=blocked_until,
        )

    return replace(state, count=count), RateLimitResult(
        allowed=True, remaining=rule.max_attempts - count
    )
