# skycast/cashout/time_decay.py
from __future__ import annotations

import time
from typing import Optional

DEFAULT_WINDOW_SECONDS = 60 * 60


def progress_ratio(
    created_at: float,
    expires_at: Optional[float],
    now: Optional[float] = None,
    *,
    default_window: float = DEFAULT_WINDOW_SECONDS,
) -> float:
    """Fraction of the wager window already elapsed, clamped to [0, 1].

    Wagers without an expiry get a synthetic window starting at creation.
    A zero or negative window counts as fully elapsed.
    """
    if now is None:
        now = time.time()
    end = expires_at if expires_at is not None else created_at + default_window
    duration = end - created_at
    if duration <= 0:
        return 1.0
    return min(max((now - created_at) / duration, 0.0), 1.0)


class TimeDecayModel:
    """Maps wager age into a bounded time contribution.

    ``exponent`` < 1 gives a concave curve (fast start, slow finish);
    1.0 is linear in the progress ratio.
    """

    def __init__(
        self, *, time_scale: float, exponent: float = 1.0,
        default_window: float = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        if time_scale < 0:
            raise ValueError("time_scale must be >= 0")
        if not 0 < exponent <= 1:
            raise ValueError("exponent must be in (0, 1]")
        self.time_scale = time_scale
        self.exponent = exponent
        self.default_window = default_window

    def time_bonus(
        self, created_at: float, expires_at: Optional[float],
        now: Optional[float] = None,
    ) -> float:
        ratio = progress_ratio(
            created_at, expires_at, now, default_window=self.default_window)
        return self.time_scale * ratio ** self.exponent
