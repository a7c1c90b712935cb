"""XP scoring, streaks and the character progression ledger."""

from questline.modules.progression.ledger import LedgerResult, ProgressionLedger
from questline.modules.progression.scoring import (
    CompletionScorer,
    HabitScoreInput,
    TaskScoreInput,
)
from questline.modules.progression.streaks import (
    StreakState,
    advance_streak,
    is_milestone,
    recompute_streak,
)

__all__ = [
    "CompletionScorer",
    "HabitScoreInput",
    "LedgerResult",
    "ProgressionLedger",
    "StreakState",
    "TaskScoreInput",
    "advance_streak",
    "is_milestone",
    "recompute_streak",
]
