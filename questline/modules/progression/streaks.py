"""
Streak tracking.

Pure functions over `StreakState`; no I/O. Used for habit streaks, the
character's daily activity streak and challenge participant streaks.

- `advance_streak` applies one new activity day.
- `recompute_streak` rebuilds a streak from the remaining activity dates
  after an undo.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class StreakState:
    current: int = 0
    longest: int = 0
    last_date: Optional[date] = None


def advance_streak(state: StreakState, day: date) -> StreakState:
    """
    Apply an activity on `day`.

    Consecutive days extend the streak, a gap restarts it at 1, and a day
    on or before `last_date` leaves the streak as it is.

    >>> s = advance_streak(StreakState(5, 5, date(2025, 1, 1)), date(2025, 1, 2))
    >>> (s.current, s.longest)
    (6, 6)
    """
    current = state.current
    last = state.last_date

    if last is None:
        current = 1
    else:
        gap = (day - last).days
        if gap == 1:
            current = max(current, 0) + 1
        elif gap > 1:
            current = 1

    if current < 1:
        current = 1

    new_last = day if last is None else max(last, day)
    return StreakState(
        current=current,
        longest=max(state.longest, current),
        last_date=new_last,
    )


def recompute_streak(
    dates: Iterable[date],
    today: date,
    longest: int = 0,
) -> StreakState:
    """
    Rebuild a streak from activity `dates` (any order, duplicates allowed).

    The run is counted back from the latest date; it is 0 when the latest
    date is more than one day before `today`. `longest` is never reduced.

    >>> recompute_streak([date(2025, 1, 3), date(2025, 1, 1), date(2025, 1, 2)],
    ...                  today=date(2025, 1, 3)).current
    3
    """
    ordered = sorted(set(dates), reverse=True)
    if not ordered:
        return StreakState(current=0, longest=longest, last_date=None)

    latest = ordered[0]
    run = 1
    for previous, current in zip(ordered, ordered[1:]):
        if previous - current != ONE_DAY:
            break
        run += 1

    if (today - latest).days > 1:
        run = 0

    return StreakState(current=run, longest=max(longest, run), last_date=latest)


def is_milestone(streak: int, interval: int = 7, extra: Iterable[int] = (30, 100)) -> bool:
    """True for streak lengths worth announcing: every `interval` days, plus `extra`."""
    if streak <= 0:
        return False
    return (interval > 0 and streak % interval == 0) or streak in set(extra)
