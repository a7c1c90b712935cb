"""
Progression formulas.

Purpose
-------
Pure calculation functions for the progression rules: the level curve,
half-up rounding, XP amount validation and the level walk applied by the
ledger when XP is gained or lost.

Design Notes
------------
- Pure functions only: no database access and no config access. Callers
  pass curve parameters explicitly (the ledger reads them from
  ConfigManager under `progression.level_curve`).
- `xp_to_next_level` is the single source of truth for level thresholds.

Usage
-----
    from questline.modules.shared.formulas import xp_to_next_level
    xp_to_next_level(2)   # 115
"""

from __future__ import annotations

import math
import numbers
from typing import Any, Callable, Tuple

from questline.modules.shared.exceptions import InvariantViolationError, ValidationError

MAX_XP_PER_EVENT = 1_000_000
DEFAULT_LEVEL_BASE = 100
DEFAULT_LEVEL_GROWTH = 1.15


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer, halves away from zero for positive values.

    >>> round_half_up(2.5)
    3
    >>> round_half_up(132.25)
    132
    """
    return int(math.floor(value + 0.5))


def xp_to_next_level(
    level: int,
    base: float = DEFAULT_LEVEL_BASE,
    growth: float = DEFAULT_LEVEL_GROWTH,
) -> int:
    """
    XP needed to go from `level` to `level + 1`.

    >>> xp_to_next_level(1)
    100
    >>> xp_to_next_level(2)
    115
    """
    level = max(1, int(level))
    return max(1, round_half_up(base * growth ** (level - 1)))


def validate_xp_amount(
    amount: Any,
    field: str = "amount",
    cap: int = MAX_XP_PER_EVENT,
) -> int:
    """
    Check that `amount` is a finite, non-negative integral number within `cap`.

    Non-numeric input is a caller mistake (`ValidationError`); a number that
    breaks the bounds is an invariant violation. Integral floats such as
    `30.0` are accepted and returned as int.
    """
    if isinstance(amount, bool) or not isinstance(amount, numbers.Real):
        raise ValidationError(field, f"must be a number, got {type(amount).__name__}")

    as_float = float(amount)
    if not math.isfinite(as_float):
        raise InvariantViolationError(field, amount, "must be finite")
    if as_float < 0:
        raise InvariantViolationError(field, amount, "must be non-negative")
    if as_float != math.floor(as_float):
        raise InvariantViolationError(field, amount, "must be an integer")
    if as_float > cap:
        raise InvariantViolationError(field, amount, f"must not exceed {cap}")
    return int(amount)


def apply_xp_gain(
    level: int,
    current_xp: int,
    amount: int,
    threshold: Callable[[int], int] = xp_to_next_level,
) -> Tuple[int, int]:
    """
    Add `amount` to the level-local XP and walk levels upward.

    Returns `(level, current_xp)` with `0 <= current_xp < threshold(level)`.

    >>> apply_xp_gain(1, 80, 30)
    (2, 10)
    """
    current_xp += amount
    while current_xp >= threshold(level):
        current_xp -= threshold(level)
        level += 1
    return level, current_xp


def apply_xp_loss(
    level: int,
    current_xp: int,
    amount: int,
    threshold: Callable[[int], int] = xp_to_next_level,
) -> Tuple[int, int]:
    """
    Subtract `amount` from the level-local XP and walk levels downward.

    Each step down adds back the lower level's full threshold. Level 1 is
    the floor; any remaining deficit is clamped to 0.

    >>> apply_xp_loss(2, 10, 30)
    (1, 80)
    """
    current_xp -= amount
    while current_xp < 0 and level > 1:
        level -= 1
        current_xp += threshold(level)
    return level, max(0, current_xp)
